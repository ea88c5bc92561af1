from __future__ import annotations

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from bot.keyboards import webapp_cta_kb
from core.config import settings


basic_router = Router()


@basic_router.message(CommandStart())
async def cmd_start(message: Message) -> None:
    kb = webapp_cta_kb()
    await message.answer(
        "Привет! Я считаю калории по фото еды 📸\n"
        "Откройте приложение, сфотографируйте блюдо и получите КБЖУ за пару секунд.",
        reply_markup=kb,
    )


@basic_router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    kb = webapp_cta_kb()
    await message.answer(
        "Доступно: /start — открыть приложение.\n"
        f"Бесплатно {settings.free_daily_limit} анализа в день, Premium снимает лимит.",
        reply_markup=kb,
    )
