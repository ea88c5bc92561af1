from __future__ import annotations

import structlog
from aiogram import F, Router
from aiogram.types import CallbackQuery

from core.config import settings
from infra.db.session import session_scope
from infra.storage.object_storage import ObjectStorage
from infra.telegram.notifier import TelegramNotifier
from services.bank.dc_merchant import DCMerchantClient
from services.subscriptions.callbacks import handle_admin_callback
from services.subscriptions.workflow import SubscriptionConfig, SubscriptionWorkflow


log = structlog.get_logger(__name__)

admin_router = Router()


def build_workflow(notifier: TelegramNotifier) -> SubscriptionWorkflow:
    return SubscriptionWorkflow(
        SubscriptionConfig.from_settings(settings),
        notifier=notifier,
        bank=DCMerchantClient(
            api_url=settings.dc_api_url,
            account=settings.dc_account,
            api_key=settings.dc_api_key,
            timeout=settings.external_timeout_sec,
        ),
        storage=ObjectStorage(),
    )


@admin_router.callback_query(F.data.regexp(r"^(approve|reject):"))
async def on_admin_decision(callback: CallbackQuery) -> None:
    message = callback.message
    chat_id = message.chat.id if message else None
    if settings.admin_chat_id is not None and chat_id != settings.admin_chat_id:
        log.warning("callback_from_foreign_chat", chat_id=chat_id)
        await callback.answer()
        return
    notifier = TelegramNotifier(callback.bot, timeout=settings.external_timeout_sec)
    async with session_scope() as session:
        outcome = await handle_admin_callback(
            session,
            build_workflow(notifier),
            notifier,
            callback_id=callback.id,
            data=callback.data,
            chat_id=chat_id,
            message_id=message.message_id if message else None,
            caption=getattr(message, "caption", None),
        )
    log.info("admin_callback_handled", outcome=outcome)
