import pytest

from conftest import ADMIN_CHAT
from core.tasks import drain_background_tasks
from domain.entities import RejectReason
from infra.db.models import PaymentStatusEnum
from infra.db.repositories.payment_repo import PaymentRepo
from infra.db.repositories.user_repo import UserRepo
from services.subscriptions import messages
from services.subscriptions.callbacks import AdminAction, handle_admin_callback, parse_callback_data
from services.subscriptions.workflow import SubscriptionWorkflow


@pytest.mark.parametrize(
    "data,expected",
    [
        ("approve:42", AdminAction("approve", 42)),
        ("reject:no_image:7", AdminAction("reject", 7, RejectReason.NO_IMAGE)),
        ("reject:no_funds:7", AdminAction("reject", 7, RejectReason.NO_FUNDS)),
        ("reject:bored:7", None),
        ("approve:abc", None),
        ("approve", None),
        ("reject:7", None),
        ("delete:7", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_callback_data(data, expected):
    assert parse_callback_data(data) == expected


async def _pending(session, workflow, make_user):
    user = await make_user()
    req = await workflow.request_manual(session, user_id=user.id, receipt=b"jpeg")
    await drain_background_tasks()
    return user, req


async def _press(session, workflow, notifier, data, caption="💰 receipt"):
    notifier.calls.clear()
    outcome = await handle_admin_callback(
        session,
        workflow,
        notifier,
        callback_id="cb-1",
        data=data,
        chat_id=ADMIN_CHAT,
        message_id=10,
        caption=caption,
    )
    await drain_background_tasks()
    return outcome


async def test_approve_button(session, workflow, notifier, make_user):
    user, req = await _pending(session, workflow, make_user)

    outcome = await _press(session, workflow, notifier, f"approve:{req.id}")

    assert outcome == "approved"
    assert notifier.calls[0] == ("answer_callback", {"callback_query_id": "cb-1", "text": messages.CALLBACK_PROCESSING})
    edits = notifier.named("edit_caption")
    assert edits == [
        {"chat_id": ADMIN_CHAT, "message_id": 10, "caption": messages.admin_approved_caption("💰 receipt")}
    ]
    assert (await UserRepo(session).get(user.id)).is_premium is True


async def test_reject_button(session, workflow, notifier, make_user):
    user, req = await _pending(session, workflow, make_user)

    outcome = await _press(session, workflow, notifier, f"reject:no_image:{req.id}")

    assert outcome == "rejected"
    assert (await PaymentRepo(session).get(req.id)).status == PaymentStatusEnum.REJECTED
    caption = notifier.named("edit_caption")[0]["caption"]
    assert "ОТКЛОНЕНО" in caption
    assert messages.REJECT_REASON_TEXT[RejectReason.NO_IMAGE] in caption
    assert (await UserRepo(session).get(user.id)).is_premium is False


async def test_double_click_is_reported_not_reapplied(session, workflow, notifier, make_user):
    _, req = await _pending(session, workflow, make_user)
    req_id = req.id
    await _press(session, workflow, notifier, f"approve:{req_id}")

    outcome = await _press(session, workflow, notifier, f"reject:no_funds:{req_id}")

    assert outcome == "already_processed"
    assert len(notifier.named("answer_callback")) == 1
    assert notifier.named("send_message") == [
        {"chat_id": ADMIN_CHAT, "text": messages.already_processed_text("APPROVED"), "reply_markup": None}
    ]
    assert notifier.named("edit_caption") == []
    assert (await PaymentRepo(session).get(req_id)).status == PaymentStatusEnum.APPROVED


async def test_unknown_request(session, workflow, notifier):
    outcome = await _press(session, workflow, notifier, "approve:9999")

    assert outcome == "not_found"
    assert notifier.named("send_message")[0]["text"] == messages.CALLBACK_NOT_FOUND


async def test_garbage_is_ignored(session, workflow, notifier):
    outcome = await _press(session, workflow, notifier, "hello")

    assert outcome == "ignored"
    assert notifier.calls == []


async def test_caption_with_markdown_chars_is_escaped(session, workflow, notifier, make_user):
    _, req = await _pending(session, workflow, make_user)

    await _press(session, workflow, notifier, f"approve:{req.id}", caption="👤 Клиент: @john_doe *vip*")

    caption = notifier.named("edit_caption")[0]["caption"]
    assert caption.startswith("👤 Клиент: @john\\_doe \\*vip\\*\n\n")
    assert caption.endswith("✅ *ОДОБРЕНО!* Пользователь получил Premium.")


def test_receipt_caption_escapes_user_fields():
    caption = messages.admin_receipt_caption(
        request_id=3, telegram_id=42, username="john_doe", first_name=None, phone_number=None
    )
    assert "@john\\_doe" in caption
    assert messages.admin_receipt_caption(
        request_id=3, telegram_id=42, username=None, first_name="A*B", phone_number=None
    ).count("A\\*B") == 1


async def test_callback_without_bot_still_applies_decision(session, config, bank_stub, storage, make_user):
    wf = SubscriptionWorkflow(config, notifier=None, bank=bank_stub.client(), storage=storage)
    user = await make_user()
    req = await wf.request_manual(session, user_id=user.id, receipt=b"jpeg")

    outcome = await handle_admin_callback(
        session, wf, None, callback_id="cb", data=f"approve:{req.id}", chat_id=ADMIN_CHAT, message_id=1, caption="c"
    )
    await drain_background_tasks()

    assert outcome == "approved"
    assert (await UserRepo(session).get(user.id)).is_premium is True
