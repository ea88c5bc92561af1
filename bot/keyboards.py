from __future__ import annotations

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup, WebAppInfo
import time

from core.config import settings


def webapp_cta_kb() -> InlineKeyboardMarkup | None:
    base = (settings.webapp_url or "").strip()
    # Требуем HTTPS для Telegram WebApp, иначе не возвращаем клавиатуру вовсе
    if not base or (not base.startswith("https://")):
        return None
    # cache-busting param, Telegram mobile WebView keeps stale bundles
    sep = "&" if "?" in base else "?"
    url = f"{base}{sep}v={int(time.time())}"
    return InlineKeyboardMarkup(
        inline_keyboard=[[InlineKeyboardButton(text="🍽 Открыть Calorie AI", web_app=WebAppInfo(url=url))]]
    )


def admin_decision_kb(request_id: int) -> InlineKeyboardMarkup:
    # callback data is parsed by splitting on ':'
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="✅ Подключить премиум", callback_data=f"approve:{request_id}")],
            [InlineKeyboardButton(text="❌ Отказать (не вижу скрин)", callback_data=f"reject:no_image:{request_id}")],
            [InlineKeyboardButton(text="❌ Отказать (нет денег)", callback_data=f"reject:no_funds:{request_id}")],
        ]
    )
