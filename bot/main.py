from __future__ import annotations

import asyncio

import structlog
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand

from core.config import settings
from core.logging import configure_logging
from core.tasks import drain_background_tasks
from bot.routers import make_root_router
from bot.middlewares.logging import LoggingMiddleware
from bot.middlewares.trace import TraceMiddleware


log = structlog.get_logger(__name__)

# in webhook mode the API process only handles admin decisions
WEBHOOK_UPDATES = ["callback_query"]


async def main() -> None:
    if not settings.telegram_bot_token:
        raise SystemExit(
            "TELEGRAM_BOT_TOKEN не задан. Укажите токен в .env и повторите."
        )

    configure_logging(settings.log_level, json_logs=settings.is_production)
    # Частые ошибки: лишние кавычки/пробелы вокруг токена. Подчистим.
    token = (settings.telegram_bot_token or "").strip().strip("'").strip('"')
    bot = Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN))

    await bot.set_my_commands(
        [
            BotCommand(command="start", description="Запуск"),
            BotCommand(command="help", description="Помощь"),
        ]
    )

    if settings.telegram_webhook_url:
        await bot.set_webhook(
            settings.telegram_webhook_url,
            secret_token=settings.telegram_webhook_secret,
            allowed_updates=WEBHOOK_UPDATES,
        )
        log.info("webhook_set", url=settings.telegram_webhook_url)
        await bot.session.close()
        return

    dp = Dispatcher(storage=MemoryStorage())
    dp.update.middleware(TraceMiddleware())
    dp.update.middleware(LoggingMiddleware())
    dp.include_router(make_root_router())

    # Поллинг без вебхуков для простого запуска на VPS
    await bot.delete_webhook(drop_pending_updates=True)
    log.info("polling_start")
    try:
        await dp.start_polling(bot)
    finally:
        await drain_background_tasks(timeout=settings.external_timeout_sec)


if __name__ == "__main__":
    asyncio.run(main())
