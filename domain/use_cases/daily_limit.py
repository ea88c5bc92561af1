from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone


@dataclass
class UsageInput:
    is_premium: bool
    subscription_expires_at: datetime | None
    daily_request_count: int
    last_request_date: datetime | None
    limit: int


@dataclass
class UsageDecision:
    allowed: bool
    unlimited: bool
    used_today: int
    new_count: int | None  # value to persist, None when nothing changes


def premium_active(is_premium: bool, expires_at: datetime | None, now: datetime | None = None) -> bool:
    if not is_premium:
        return False
    if expires_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at > now


def used_today(count: int, last_request: datetime | None, today: date) -> int:
    # counter belongs to the day of the last request; a new day starts at zero
    if last_request is None or last_request.date() != today:
        return 0
    return count


def check_daily_limit(inp: UsageInput, now: datetime | None = None) -> UsageDecision:
    now = now or datetime.now(timezone.utc)
    if premium_active(inp.is_premium, inp.subscription_expires_at, now):
        return UsageDecision(allowed=True, unlimited=True, used_today=0, new_count=None)
    count = used_today(inp.daily_request_count, inp.last_request_date, now.date())
    if count >= inp.limit:
        return UsageDecision(allowed=False, unlimited=False, used_today=count, new_count=None)
    return UsageDecision(allowed=True, unlimited=False, used_today=count, new_count=count + 1)
