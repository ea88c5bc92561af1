from __future__ import annotations

from domain.entities import RejectReason


REJECT_REASON_TEXT = {
    RejectReason.NO_IMAGE: "Нечеткий или отсутствующий скриншот",
    RejectReason.NO_FUNDS: "Оплата не найдена в истории",
}

PAYMENT_NOT_FOUND = "Оплата не найдена. Проверьте комментарий или попробуйте позже."
PAYMENT_ALREADY_USED = "Этот платеж уже был использован."
BANK_UNAVAILABLE = "Не удалось проверить оплату. Попробуйте позже."

CALLBACK_PROCESSING = "⏳ Обработка..."
CALLBACK_NOT_FOUND = "❌ Запрос не найден"

_MD_SPECIAL = ("_", "*", "`", "[")


def escape_md(text: str) -> str:
    """Escape plain text for the bot's legacy Markdown parse mode."""
    for ch in _MD_SPECIAL:
        text = text.replace(ch, "\\" + ch)
    return text


def _user_line(username: str | None, first_name: str | None) -> str:
    return escape_md(f"@{username}" if username else (first_name or "User"))


def admin_receipt_caption(
    *,
    request_id: int,
    telegram_id: int,
    username: str | None,
    first_name: str | None,
    phone_number: str | None,
) -> str:
    phone_line = f"📱 Phone: `{phone_number}`\n" if phone_number else ""
    return (
        "💰 *Новый запрос на Premium!*\n\n"
        f"👤 Клиент: {_user_line(username, first_name)}\n"
        f"{phone_line}"
        f"🆔 TG ID: `{telegram_id}`\n"
        f"📝 Request ID: `{request_id}`\n\n"
        "Проверьте оплату и выберите действие:"
    )


def admin_auto_payment_text(
    *,
    telegram_id: int,
    username: str | None,
    first_name: str | None,
    phone_number: str | None,
    amount: float,
    currency: str,
    docnum: str,
    period_days: int,
) -> str:
    phone_line = f"📱 Телефон: `{phone_number}`\n" if phone_number else ""
    return (
        "✅ *Новая оплата через DC Wallet!*\n\n"
        f"👤 Клиент: {_user_line(username, first_name)}\n"
        f"{phone_line}"
        f"🆔 ID: `{telegram_id}`\n"
        f"💰 Сумма: *{amount:g} {currency}*\n"
        f"📄 Док: `{docnum}`\n\n"
        f"✨ Премиум активирован автоматически на {period_days} дн."
    )


def user_approved_text(period_days: int) -> str:
    return (
        "🌟 *Поздравляем! Ваш Premium активирован!* 🌟\n\n"
        f"Теперь у вас есть безлимитный доступ ко всем функциям на {period_days} дней. Приятного аппетита!"
    )


def user_rejected_text(reason: RejectReason) -> str:
    return (
        "⚠️ *Оплата отклонена*\n\n"
        f"Причина: {REJECT_REASON_TEXT[reason]}\n\n"
        "Пожалуйста, отправьте корректный чек в меню Premium ещё раз."
    )


def admin_approved_caption(original: str | None) -> str:
    # Telegram hands captions back as plain text, entities stripped
    return f"{escape_md(original or '')}\n\n✅ *ОДОБРЕНО!* Пользователь получил Premium."


def admin_rejected_caption(original: str | None, reason: RejectReason) -> str:
    return f"{escape_md(original or '')}\n\n❌ *ОТКЛОНЕНО.*\nПричина: {REJECT_REASON_TEXT[reason]}"


def already_processed_text(status: str) -> str:
    return f"⚠️ Запрос уже обработан ({status})"
