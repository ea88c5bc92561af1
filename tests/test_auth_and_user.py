import hashlib
import hmac
import json
from urllib.parse import urlencode

import jwt
import pytest

from core.config import settings
from infra.api.auth import check_init_data, parse_init_data_user, refresh_token, verify_init_data


BOT_TOKEN = "123456:TEST-TOKEN"


def signed_init_data(user: dict, token: str = BOT_TOKEN) -> str:
    params = {"auth_date": "1700000000", "query_id": "AAE", "user": json.dumps(user)}
    data_check = "\n".join(f"{k}={v}" for k, v in sorted(params.items()))
    secret = hmac.new(b"WebAppData", token.encode(), hashlib.sha256).digest()
    params["hash"] = hmac.new(secret, data_check.encode(), hashlib.sha256).hexdigest()
    return urlencode(params)


TG_USER = {"id": 5550001, "first_name": "Dilnoza", "last_name": "K", "username": "dil"}


def test_verify_init_data():
    init = signed_init_data(TG_USER)
    assert verify_init_data(init, BOT_TOKEN) is True
    assert verify_init_data(init, "other:token") is False
    assert verify_init_data(init.replace("Dilnoza", "Mallory"), BOT_TOKEN) is False
    assert verify_init_data("user=%7B%7D", BOT_TOKEN) is False


def test_parse_init_data_user():
    assert parse_init_data_user(signed_init_data(TG_USER))["id"] == 5550001
    assert parse_init_data_user("user=not-json") is None
    assert parse_init_data_user("auth_date=1") is None


def test_mock_hash_only_outside_production(monkeypatch):
    init = urlencode({"user": json.dumps(TG_USER), "hash": "mock"})
    monkeypatch.setattr(settings, "app_env", "development")
    assert check_init_data(init) is True
    monkeypatch.setattr(settings, "app_env", "production")
    monkeypatch.setattr(settings, "telegram_bot_token", BOT_TOKEN)
    assert check_init_data(init) is False


async def test_auth_creates_then_syncs_user(client, monkeypatch):
    monkeypatch.setattr(settings, "telegram_bot_token", BOT_TOKEN)

    first = await client.post("/api/auth", json={"initData": signed_init_data(TG_USER)})
    assert first.status_code == 200, first.text
    body = first.json()
    assert body["user"]["telegramId"] == "5550001"
    assert body["user"]["dailyCalorieGoal"] == 2000
    claims = jwt.decode(body["token"], settings.webapp_jwt_secret, algorithms=["HS256"])
    assert claims["tid"] == 5550001
    assert claims["scope"] == "webapp"

    renamed = {**TG_USER, "username": "dil_new"}
    second = (await client.post("/api/auth", json={"initData": signed_init_data(renamed)})).json()
    assert second["user"]["id"] == body["user"]["id"]
    assert second["user"]["username"] == "dil_new"


async def test_auth_rejects_bad_signature(client, monkeypatch):
    monkeypatch.setattr(settings, "telegram_bot_token", BOT_TOKEN)
    resp = await client.post("/api/auth", json={"initData": signed_init_data(TG_USER, token="x:y")})
    assert resp.status_code == 401


async def test_auth_requires_init_data(client):
    assert (await client.post("/api/auth", json={})).status_code == 400


async def test_refresh(client, monkeypatch):
    monkeypatch.setattr(settings, "telegram_bot_token", BOT_TOKEN)
    token = (await client.post("/api/auth", json={"initData": signed_init_data(TG_USER)})).json()["token"]

    resp = await client.post("/api/auth/refresh", json={"token": token})
    assert resp.status_code == 200
    assert resp.json()["token"]

    assert (await client.post("/api/auth/refresh", json={"token": "garbage"})).status_code == 401


def test_refresh_rejects_foreign_scope():
    token = jwt.encode({"sub": "1", "tid": 1, "scope": "export"}, settings.webapp_jwt_secret, algorithm="HS256")
    with pytest.raises(jwt.InvalidTokenError):
        refresh_token(token)


async def _auth(client, monkeypatch) -> int:
    monkeypatch.setattr(settings, "telegram_bot_token", BOT_TOKEN)
    return (await client.post("/api/auth", json={"initData": signed_init_data(TG_USER)})).json()["user"]["id"]


async def test_get_user(client, monkeypatch):
    user_id = await _auth(client, monkeypatch)

    body = (await client.get(f"/api/user/{user_id}")).json()

    assert body["user"]["firstName"] == "Dilnoza"
    assert body["user"]["isPremium"] is False
    assert (await client.get("/api/user/99999")).status_code == 404


async def test_patch_profile_computes_recommended_goal(client, monkeypatch):
    user_id = await _auth(client, monkeypatch)

    resp = await client.patch(
        f"/api/user/{user_id}",
        json={"age": 30, "gender": "MALE", "heightCm": 180, "weightKg": 80, "activity": "MODERATE", "goal": "MAINTAIN"},
    )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    # BMR 1780 * 1.55 = 2759 -> 2760
    assert body["recommended"] == 2760
    assert body["user"]["dailyCalorieGoal"] == 2760


async def test_patch_profile_partial_update_uses_stored_fields(client, monkeypatch):
    user_id = await _auth(client, monkeypatch)
    await client.patch(f"/api/user/{user_id}", json={"age": 30, "gender": "MALE", "heightCm": 180, "weightKg": 80})

    body = (await client.patch(f"/api/user/{user_id}", json={"goal": "GAIN"})).json()

    # 1780 * 1.2 * 1.1 = 2349.6 -> 2350
    assert body["recommended"] == 2350
    assert body["user"]["goal"] == "GAIN"


async def test_patch_explicit_goal(client, monkeypatch):
    user_id = await _auth(client, monkeypatch)

    ok = await client.patch(f"/api/user/{user_id}", json={"dailyCalorieGoal": 1800})
    assert ok.json()["user"]["dailyCalorieGoal"] == 1800

    for bad in (799, 10001):
        assert (await client.patch(f"/api/user/{user_id}", json={"dailyCalorieGoal": bad})).status_code == 400


async def test_delete_user_cascades(client, monkeypatch):
    user_id = await _auth(client, monkeypatch)
    await client.post("/api/meals", data={"userId": str(user_id), "photoUrl": "u", "name": "X", "calories": "1"})
    await client.post(
        "/api/subscriptions/request", data={"userId": str(user_id)}, files={"receipt": ("r.jpg", b"jpg", "image/jpeg")}
    )

    assert (await client.delete(f"/api/user/{user_id}")).json() == {"success": True}

    assert (await client.get(f"/api/user/{user_id}")).status_code == 404
    assert (await client.get("/api/subscriptions/pending")).json() == []
    assert (await client.delete(f"/api/user/{user_id}")).status_code == 404
