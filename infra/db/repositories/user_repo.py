from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from infra.db.models import User


class UserRepo:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: int) -> User | None:
        res = await self.session.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def get_by_telegram_id(self, telegram_id: int) -> User | None:
        res = await self.session.execute(select(User).where(User.telegram_id == telegram_id))
        return res.scalar_one_or_none()

    async def upsert_from_telegram(
        self,
        *,
        telegram_id: int,
        first_name: str | None = None,
        last_name: str | None = None,
        username: str | None = None,
    ) -> User:
        user = await self.get_by_telegram_id(telegram_id)
        if user is None:
            res = await self.session.execute(
                insert(User)
                .values(telegram_id=telegram_id, first_name=first_name, last_name=last_name, username=username)
                .returning(User.id)
            )
            user_id = int(res.scalar_one())
            await self.session.commit()
            return await self.get(user_id)  # type: ignore[return-value]
        if user.username != username:
            # usernames change on Telegram side; keep ours in sync
            user.username = username
            await self.session.commit()
        return user

    async def update_profile(self, user_id: int, data: dict[str, Any]) -> User | None:
        if data:
            await self.session.execute(update(User).where(User.id == user_id).values(**data))
            await self.session.commit()
        return await self.get(user_id)

    async def set_phone(self, user_id: int, phone_number: str, *, autocommit: bool = True) -> None:
        await self.session.execute(update(User).where(User.id == user_id).values(phone_number=phone_number))
        if autocommit:
            await self.session.commit()

    async def set_usage(self, user_id: int, *, count: int, at: datetime, autocommit: bool = True) -> None:
        await self.session.execute(
            update(User).where(User.id == user_id).values(daily_request_count=count, last_request_date=at)
        )
        if autocommit:
            await self.session.commit()

    async def activate_premium(self, user_id: int, *, expires_at: datetime) -> int:
        # caller owns the transaction; never commits on its own
        res = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(is_premium=True, subscription_expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return int(res.rowcount or 0)

    async def delete(self, user_id: int) -> bool:
        res = await self.session.execute(delete(User).where(User.id == user_id))
        await self.session.commit()
        return bool(res.rowcount)
