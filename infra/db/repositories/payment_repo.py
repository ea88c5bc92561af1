from __future__ import annotations

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from infra.db.models import PaymentRequest, PaymentStatusEnum


class PaymentRepo:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        user_id: int,
        amount: float,
        currency: str,
        status: PaymentStatusEnum = PaymentStatusEnum.PENDING,
        receipt_url: str | None = None,
        transaction_id: str | None = None,
        autocommit: bool = True,
    ) -> int:
        res = await self.session.execute(
            insert(PaymentRequest)
            .values(
                user_id=user_id,
                amount=amount,
                currency=currency,
                status=status,
                receipt_url=receipt_url,
                transaction_id=transaction_id,
            )
            .returning(PaymentRequest.id)
        )
        request_id = int(res.scalar_one())
        if autocommit:
            await self.session.commit()
        return request_id

    async def get(self, request_id: int) -> PaymentRequest | None:
        res = await self.session.execute(
            select(PaymentRequest)
            .where(PaymentRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def latest_for_user(self, user_id: int) -> PaymentRequest | None:
        res = await self.session.execute(
            select(PaymentRequest)
            .where(PaymentRequest.user_id == user_id)
            .order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc())
            .limit(1)
        )
        return res.scalars().first()

    async def list_pending(self) -> list[PaymentRequest]:
        res = await self.session.execute(
            select(PaymentRequest)
            .options(selectinload(PaymentRequest.user))
            .where(PaymentRequest.status == PaymentStatusEnum.PENDING)
            .order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc())
        )
        return list(res.scalars().all())

    async def find_by_transaction_id(self, transaction_id: str) -> PaymentRequest | None:
        res = await self.session.execute(
            select(PaymentRequest).where(PaymentRequest.transaction_id == transaction_id).limit(1)
        )
        return res.scalars().first()

    async def transition(
        self,
        request_id: int,
        *,
        from_status: PaymentStatusEnum,
        to_status: PaymentStatusEnum,
    ) -> bool:
        """Compare-and-set on status. False means the row was missing or already moved."""
        res = await self.session.execute(
            update(PaymentRequest)
            .where(PaymentRequest.id == request_id, PaymentRequest.status == from_status)
            .values(status=to_status)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1
