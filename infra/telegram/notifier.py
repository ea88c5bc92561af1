from __future__ import annotations

import asyncio

import structlog
from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.types import BufferedInputFile, InlineKeyboardMarkup


log = structlog.get_logger(__name__)


class TelegramNotifier:
    """Bot API calls used by the API process. Each call is time-bounded and raises on failure."""

    def __init__(self, bot: Bot, *, timeout: float = 15.0) -> None:
        self.bot = bot
        self.timeout = timeout

    @classmethod
    def from_token(cls, token: str, *, timeout: float = 15.0) -> "TelegramNotifier":
        # Частые ошибки: лишние кавычки/пробелы вокруг токена
        token = token.strip().strip("'").strip('"')
        bot = Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN))
        return cls(bot, timeout=timeout)

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout)

    async def send_message(self, chat_id: int, text: str, reply_markup: InlineKeyboardMarkup | None = None) -> None:
        await self._bounded(self.bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup))
        log.info("tg_message_sent", chat_id=chat_id)

    async def send_photo(
        self,
        chat_id: int,
        photo: bytes,
        caption: str,
        reply_markup: InlineKeyboardMarkup | None = None,
        filename: str = "receipt.jpg",
    ) -> None:
        await self._bounded(
            self.bot.send_photo(
                chat_id=chat_id,
                photo=BufferedInputFile(photo, filename=filename),
                caption=caption,
                reply_markup=reply_markup,
            )
        )
        log.info("tg_photo_sent", chat_id=chat_id)

    async def edit_caption(self, chat_id: int, message_id: int, caption: str) -> None:
        # empty keyboard removes the decision buttons
        await self._bounded(
            self.bot.edit_message_caption(
                chat_id=chat_id,
                message_id=message_id,
                caption=caption,
                reply_markup=InlineKeyboardMarkup(inline_keyboard=[]),
            )
        )

    async def answer_callback(self, callback_query_id: str, text: str, show_alert: bool = False) -> None:
        await self._bounded(
            self.bot.answer_callback_query(callback_query_id=callback_query_id, text=text, show_alert=show_alert)
        )

    async def close(self) -> None:
        await self.bot.session.close()
