"""Premium subscription workflow.

A payment request moves ``PENDING -> APPROVED`` or ``PENDING -> REJECTED`` and
never leaves a terminal state. Two ways in:

* manual: the user uploads a receipt, the request waits in PENDING until an
  admin presses approve/reject;
* automated: the bank statement is searched for a transfer carrying the
  user's match key; a hit is recorded directly as APPROVED.

Every transition is a conditional UPDATE on the current status committed in
the same transaction as the user's premium fields. Notifications run as
detached best-effort tasks after the commit.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bot.keyboards import admin_decision_kb
from core.tasks import spawn_best_effort
from domain.entities import Decision, PaymentStatus, RejectReason, VerifyResult
from domain.errors import (
    AlreadyProcessedError,
    BankLookupError,
    InvalidInputError,
    NotFoundError,
    StorageUnavailableError,
)
from domain.use_cases.daily_limit import premium_active
from infra.db.models import PaymentRequest, PaymentStatusEnum
from infra.db.repositories.payment_repo import PaymentRepo
from infra.db.repositories.user_repo import UserRepo
from infra.storage.object_storage import STORAGE_ERRORS, object_key_for
from services.subscriptions import messages


log = structlog.get_logger(__name__)


def notify_best_effort(notifier, method: str, *args: Any, event: str, **fields: Any) -> None:
    """Fire a detached notifier call, or log and skip when no bot is configured."""
    if notifier is None:
        log.warning("notifier_not_configured", notify=event, **fields)
        return
    spawn_best_effort(getattr(notifier, method)(*args), event=event, **fields)


@dataclass
class SubscriptionConfig:
    admin_chat_id: int | None
    premium_period_days: int = 90
    price: float = 30.0
    currency: str = "TJS"
    lookback_days: int = 7
    amount_tolerance: float = 0.1
    incoming_columns: tuple[str, ...] = ("debet", "credit")

    @classmethod
    def from_settings(cls, s: Any) -> "SubscriptionConfig":
        columns = tuple(c.strip() for c in s.dc_incoming_columns.split(",") if c.strip())
        return cls(
            admin_chat_id=s.admin_chat_id,
            premium_period_days=s.premium_period_days,
            price=s.subscription_price,
            currency=s.subscription_currency,
            lookback_days=s.dc_lookback_days,
            amount_tolerance=s.dc_amount_tolerance,
            incoming_columns=columns or ("debet", "credit"),
        )


class SubscriptionWorkflow:
    def __init__(self, config: SubscriptionConfig, *, notifier, bank, storage) -> None:
        self.config = config
        self.notifier = notifier
        self.bank = bank
        self.storage = storage

    def _expiry(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(days=self.config.premium_period_days)

    # Manual path

    async def request_manual(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        receipt: bytes,
        content_type: str = "image/jpeg",
        phone_number: str | None = None,
    ) -> PaymentRequest:
        if not receipt:
            raise InvalidInputError("User ID and Receipt Image required")
        users = UserRepo(session)
        payments = PaymentRepo(session)
        user = await users.get(user_id)
        if user is None:
            raise NotFoundError("Пользователь не найден")

        key = object_key_for(f"receipts/{user_id}", content_type)
        try:
            receipt_url = await asyncio.to_thread(self.storage.put_bytes, key, receipt, content_type)
        except STORAGE_ERRORS as e:
            raise StorageUnavailableError("Receipt storage failed") from e

        try:
            if phone_number and phone_number != user.phone_number:
                await users.set_phone(user_id, phone_number, autocommit=False)
            request_id = await payments.create(
                user_id=user_id,
                amount=self.config.price,
                currency=self.config.currency,
                status=PaymentStatusEnum.PENDING,
                receipt_url=receipt_url,
                autocommit=False,
            )
            await session.commit()
        except Exception:
            await session.rollback()
            # no request row points at the receipt any more
            await asyncio.to_thread(self.storage.delete_url, receipt_url)
            raise
        log.info("payment_request_created", request_id=request_id, user_id=user_id)

        if self.config.admin_chat_id is not None:
            caption = messages.admin_receipt_caption(
                request_id=request_id,
                telegram_id=user.telegram_id,
                username=user.username,
                first_name=user.first_name,
                phone_number=phone_number or user.phone_number,
            )
            notify_best_effort(
                self.notifier,
                "send_photo",
                self.config.admin_chat_id,
                receipt,
                caption,
                admin_decision_kb(request_id),
                event="admin_receipt_notify",
                request_id=request_id,
            )
        else:
            log.warning("admin_chat_not_configured", request_id=request_id)
        return await payments.get(request_id)  # type: ignore[return-value]

    async def _transition(
        self,
        session: AsyncSession,
        request_id: int,
        to_status: PaymentStatusEnum,
        expires_at: datetime | None = None,
    ) -> PaymentRequest:
        payments = PaymentRepo(session)
        try:
            moved = await payments.transition(request_id, from_status=PaymentStatusEnum.PENDING, to_status=to_status)
            if not moved:
                await session.rollback()
                current = await payments.get(request_id)
                if current is None:
                    raise NotFoundError("Request not found")
                raise AlreadyProcessedError(current.status.value)
            request = await payments.get(request_id)
            if expires_at is not None:
                await UserRepo(session).activate_premium(request.user_id, expires_at=expires_at)  # type: ignore[union-attr]
            await session.commit()
        except (NotFoundError, AlreadyProcessedError):
            raise
        except Exception:
            await session.rollback()
            raise
        return request  # type: ignore[return-value]

    async def approve(self, session: AsyncSession, request_id: int) -> Decision:
        expires_at = self._expiry()
        request = await self._transition(session, request_id, PaymentStatusEnum.APPROVED, expires_at)
        log.info("payment_request_approved", request_id=request_id, user_id=request.user_id)
        user = await UserRepo(session).get(request.user_id)
        if user is not None:
            notify_best_effort(
                self.notifier,
                "send_message",
                user.telegram_id,
                messages.user_approved_text(self.config.premium_period_days),
                event="user_approve_notify",
                request_id=request_id,
            )
        return Decision(request_id=request_id, user_id=request.user_id, status=PaymentStatus.APPROVED, expires_at=expires_at)

    async def reject(self, session: AsyncSession, request_id: int, reason: RejectReason) -> Decision:
        request = await self._transition(session, request_id, PaymentStatusEnum.REJECTED)
        log.info("payment_request_rejected", request_id=request_id, user_id=request.user_id, reason=reason.value)
        user = await UserRepo(session).get(request.user_id)
        if user is not None:
            notify_best_effort(
                self.notifier,
                "send_message",
                user.telegram_id,
                messages.user_rejected_text(reason),
                event="user_reject_notify",
                request_id=request_id,
            )
        return Decision(request_id=request_id, user_id=request.user_id, status=PaymentStatus.REJECTED)

    # Automated path

    async def verify_bank_payment(self, session: AsyncSession, user_id: int) -> VerifyResult:
        users = UserRepo(session)
        payments = PaymentRepo(session)
        user = await users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")

        # users put their Telegram id into the transfer comment
        match_key = str(user.telegram_id)
        log.info("bank_verify_start", user_id=user_id, match_key=match_key)
        try:
            tx = await self.bank.find_payment(
                match_key=match_key,
                amount=self.config.price,
                lookback_days=self.config.lookback_days,
                tolerance=self.config.amount_tolerance,
                columns=self.config.incoming_columns,
            )
        except BankLookupError as e:
            log.warning("bank_lookup_failed", user_id=user_id, error=str(e), bank_code=e.bank_code)
            return VerifyResult(success=False, message=messages.BANK_UNAVAILABLE)
        if tx is None or not tx.docnum:
            return VerifyResult(success=False, message=messages.PAYMENT_NOT_FOUND)

        if await payments.find_by_transaction_id(tx.docnum) is not None:
            log.info("bank_tx_already_used", user_id=user_id, docnum=tx.docnum)
            return VerifyResult(success=False, message=messages.PAYMENT_ALREADY_USED)

        expires_at = self._expiry()
        try:
            request_id = await payments.create(
                user_id=user_id,
                amount=self.config.price,
                currency=self.config.currency,
                status=PaymentStatusEnum.APPROVED,
                transaction_id=tx.docnum,
                autocommit=False,
            )
            await users.activate_premium(user_id, expires_at=expires_at)
            await session.commit()
        except IntegrityError:
            # a concurrent verify consumed the same document first
            await session.rollback()
            log.info("bank_tx_already_used", user_id=user_id, docnum=tx.docnum)
            return VerifyResult(success=False, message=messages.PAYMENT_ALREADY_USED)
        except Exception:
            await session.rollback()
            raise
        log.info("bank_verify_approved", user_id=user_id, request_id=request_id, docnum=tx.docnum)

        if self.config.admin_chat_id is not None:
            text = messages.admin_auto_payment_text(
                telegram_id=user.telegram_id,
                username=user.username,
                first_name=user.first_name,
                phone_number=user.phone_number,
                amount=self.config.price,
                currency=self.config.currency,
                docnum=tx.docnum,
                period_days=self.config.premium_period_days,
            )
            notify_best_effort(
                self.notifier,
                "send_message",
                self.config.admin_chat_id,
                text,
                event="admin_auto_payment_notify",
                request_id=request_id,
            )
        return VerifyResult(success=True, expires_at=expires_at, request_id=request_id)

    # Reads

    @staticmethod
    async def status(session: AsyncSession, user_id: int) -> dict[str, Any]:
        user = await UserRepo(session).get(user_id)
        if user is None:
            return {"isPremium": False, "lastRequestStatus": "NONE", "lastRequestDate": None}
        last = await PaymentRepo(session).latest_for_user(user_id)
        return {
            "isPremium": premium_active(user.is_premium, user.subscription_expires_at),
            "lastRequestStatus": last.status.value if last else "NONE",
            "lastRequestDate": last.created_at if last else None,
        }

    @staticmethod
    async def list_pending(session: AsyncSession) -> list[PaymentRequest]:
        return await PaymentRepo(session).list_pending()
