import os
import tempfile

# settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "test"
os.environ["ADMIN_CHAT_ID"] = "999"
os.environ["MEDIA_ROOT"] = tempfile.mkdtemp(prefix="calorie-media-")
os.environ.pop("ADMIN_API_SECRET", None)
os.environ.pop("TELEGRAM_WEBHOOK_SECRET", None)

from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.tasks import drain_background_tasks
from domain.entities import FoodAnalysis
from domain.errors import BankLookupError
from infra.db.models import Base, User
from services.bank.dc_merchant import DCMerchantClient
from services.subscriptions.workflow import SubscriptionConfig, SubscriptionWorkflow


ADMIN_CHAT = 999


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def _record(self, name, **kw):
        self.calls.append((name, kw))
        if self.fail:
            raise RuntimeError("telegram is down")

    async def send_message(self, chat_id, text, reply_markup=None):
        await self._record("send_message", chat_id=chat_id, text=text, reply_markup=reply_markup)

    async def send_photo(self, chat_id, photo, caption, reply_markup=None, filename="receipt.jpg"):
        await self._record("send_photo", chat_id=chat_id, photo=photo, caption=caption, reply_markup=reply_markup)

    async def edit_caption(self, chat_id, message_id, caption):
        await self._record("edit_caption", chat_id=chat_id, message_id=message_id, caption=caption)

    async def answer_callback(self, callback_query_id, text, show_alert=False):
        await self._record("answer_callback", callback_query_id=callback_query_id, text=text)

    async def close(self):
        pass

    def named(self, name):
        return [kw for n, kw in self.calls if n == name]


class FakeStorage:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.objects = {}
        self.deleted = []

    def put_bytes(self, key, data, content_type="application/octet-stream"):
        if self.fail:
            raise OSError("disk full")
        self.objects[key] = data
        return f"https://cdn.test/{key}"

    def delete_url(self, url):
        self.deleted.append(url)
        return self.objects.pop(url.removeprefix("https://cdn.test/"), None) is not None


class FakeVision:
    def __init__(self, result: FoodAnalysis | None = None):
        self.result = result or FoodAnalysis(
            name="Плов", calories=520, protein=18.0, fat=22.5, carbs=61.0, ingredients=["Рис", "Морковь"],
            weight_g=300, confidence=0.9,
        )
        self.calls = 0

    async def analyze(self, image_bytes, content_type="image/jpeg"):
        self.calls += 1
        return self.result

    async def analyze_url(self, image_url):
        self.calls += 1
        return self.result


def statement_xml(*rows) -> str:
    """rows: (docnum, amount, purpose) tuples, amount goes to the debet column."""
    body = "".join(
        f"<str{i}><name>Merchant</name><docnum>{doc}</docnum><date>01.06.25</date>"
        f"<payer>Client</payer><debet>{amount}</debet><credit>0</credit><naznach>{purpose}</naznach></str{i}>"
        for i, (doc, amount, purpose) in enumerate(rows, start=1)
    )
    return f"<?xml version='1.0' encoding='utf-8'?><result>{body}</result>"


class BankStub:
    """DC statement endpoint served over httpx.MockTransport."""

    def __init__(self):
        self.xml = statement_xml()
        self.status_code = 200
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text=self.xml)

    def client(self) -> DCMerchantClient:
        return DCMerchantClient(
            api_url="http://bank.test/onecapi",
            account="ACC1",
            api_key="SIGN",
            transport=httpx.MockTransport(self.handler),
        )


class FailingBank:
    async def find_payment(self, **kw):
        raise BankLookupError("statement request failed: timeout")


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _fk_on(dbapi_conn, _):
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await drain_background_tasks(timeout=5)
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def vision():
    return FakeVision()


@pytest.fixture
def bank_stub():
    return BankStub()


@pytest.fixture
def config():
    return SubscriptionConfig(
        admin_chat_id=ADMIN_CHAT,
        premium_period_days=90,
        price=30.0,
        currency="TJS",
        lookback_days=7,
        amount_tolerance=0.1,
        incoming_columns=("debet", "credit"),
    )


@pytest.fixture
def workflow(config, notifier, storage, bank_stub):
    return SubscriptionWorkflow(config, notifier=notifier, bank=bank_stub.client(), storage=storage)


@pytest.fixture
def make_user(session):
    async def _make(telegram_id=111222333, **fields):
        user = User(telegram_id=telegram_id, first_name="Ali", username="ali", **fields)
        session.add(user)
        await session.commit()
        return user

    return _make


class FakeRedis:
    def __init__(self):
        self.counters = {}

    async def incr(self, key):
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]


@pytest.fixture
async def client(session_factory, notifier, storage, vision, bank_stub, monkeypatch):
    from infra.api import app as app_module
    from infra.api.deps import get_bank_client, get_notifier, get_storage, get_vision
    from infra.db.session import get_session

    monkeypatch.setattr(app_module, "redis_client", FakeRedis())
    app = app_module.create_app()

    async def _session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_vision] = lambda: vision
    app.dependency_overrides[get_bank_client] = bank_stub.client

    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def aware(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
