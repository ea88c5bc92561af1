from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any
from urllib.parse import parse_qsl

import jwt
from jwt.exceptions import InvalidTokenError

from core.config import settings


def verify_init_data(init_data: str, bot_token: str) -> bool:
    try:
        params = dict(parse_qsl(init_data, keep_blank_values=True))
        hash_value = params.pop("hash", None)
        if not hash_value:
            return False
        data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(params.items()))
        secret_key = hmac.new("WebAppData".encode(), bot_token.encode(), hashlib.sha256).digest()
        h = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()
        return hmac.compare_digest(h, hash_value)
    except (ValueError, TypeError):
        return False


def is_mock_init_data(init_data: str) -> bool:
    params = dict(parse_qsl(init_data, keep_blank_values=True))
    return params.get("hash") == "mock"


def parse_init_data_user(init_data: str) -> dict[str, Any] | None:
    """Telegram user object embedded in initData, or None."""
    params = dict(parse_qsl(init_data, keep_blank_values=True))
    raw = params.get("user")
    if not raw:
        return None
    try:
        user = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(user, dict) or not user.get("id"):
        return None
    return user


def check_init_data(init_data: str) -> bool:
    # local development runs outside Telegram and sends hash=mock
    if not settings.is_production and is_mock_init_data(init_data):
        return True
    if not settings.telegram_bot_token:
        return False
    return verify_init_data(init_data, settings.telegram_bot_token)


def issue_token(user_id: int, telegram_id: int, *, now: int | None = None) -> tuple[str, int]:
    now = now or int(time.time())
    exp = now + int(settings.webapp_jwt_ttl_minutes) * 60
    claims = {"sub": str(user_id), "tid": telegram_id, "iat": now, "exp": exp, "scope": "webapp"}
    return jwt.encode(claims, settings.webapp_jwt_secret, algorithm="HS256"), exp


def refresh_token(token: str) -> tuple[str, int]:
    """Re-issue a webapp token with a shifted expiry. Raises InvalidTokenError."""
    data = jwt.decode(token, settings.webapp_jwt_secret, algorithms=["HS256"])
    # Allow refresh only for webapp scope
    if data.get("scope") != "webapp":
        raise InvalidTokenError("bad scope")
    return issue_token(int(data["sub"]), int(data["tid"]))
