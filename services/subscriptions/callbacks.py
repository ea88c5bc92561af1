"""Admin approve/reject button handling.

Shared by the HTTP webhook and the aiogram polling router. Telegram accepts a
single answer per callback query, so the button is acknowledged first and any
outcome other than success is reported to the admin chat as a message.
"""
from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import RejectReason
from domain.errors import AlreadyProcessedError, NotFoundError
from services.subscriptions import messages
from services.subscriptions.workflow import SubscriptionWorkflow, notify_best_effort


log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AdminAction:
    action: str  # "approve" | "reject"
    request_id: int
    reason: RejectReason | None = None


def parse_callback_data(data: str | None) -> AdminAction | None:
    """``approve:<id>`` or ``reject:<reason>:<id>``; anything else is ignored."""
    if not data:
        return None
    parts = data.split(":")
    try:
        if parts[0] == "approve" and len(parts) == 2:
            return AdminAction("approve", int(parts[1]))
        if parts[0] == "reject" and len(parts) == 3:
            return AdminAction("reject", int(parts[2]), RejectReason(parts[1]))
    except ValueError:
        return None
    return None


async def handle_admin_callback(
    session: AsyncSession,
    workflow: SubscriptionWorkflow,
    notifier,
    *,
    callback_id: str,
    data: str | None,
    chat_id: int | None,
    message_id: int | None,
    caption: str | None,
) -> str:
    """Apply the admin decision behind a button press. Returns an outcome tag."""
    action = parse_callback_data(data)
    if action is None:
        log.info("admin_callback_ignored", data=data)
        return "ignored"

    if notifier is not None:
        try:
            await notifier.answer_callback(callback_id, messages.CALLBACK_PROCESSING)
        except Exception as e:
            log.warning("callback_answer_failed", callback_id=callback_id, error=str(e))

    try:
        if action.action == "approve":
            await workflow.approve(session, action.request_id)
            new_caption = messages.admin_approved_caption(caption)
        else:
            await workflow.reject(session, action.request_id, action.reason)  # type: ignore[arg-type]
            new_caption = messages.admin_rejected_caption(caption, action.reason)  # type: ignore[arg-type]
    except NotFoundError:
        log.info("admin_callback_not_found", request_id=action.request_id)
        if chat_id is not None:
            notify_best_effort(
                notifier,
                "send_message",
                chat_id,
                messages.CALLBACK_NOT_FOUND,
                event="admin_not_found_notify",
                request_id=action.request_id,
            )
        return "not_found"
    except AlreadyProcessedError as e:
        log.info("admin_callback_already_processed", request_id=action.request_id, status=e.status)
        if chat_id is not None:
            notify_best_effort(
                notifier,
                "send_message",
                chat_id,
                messages.already_processed_text(e.status),
                event="admin_already_processed_notify",
                request_id=action.request_id,
            )
        return "already_processed"

    if chat_id is not None and message_id is not None:
        notify_best_effort(
            notifier,
            "edit_caption",
            chat_id,
            message_id,
            new_caption,
            event="admin_caption_edit",
            request_id=action.request_id,
        )
    return "approved" if action.action == "approve" else "rejected"
