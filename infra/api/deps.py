from __future__ import annotations

import hmac
from functools import lru_cache

import structlog
from fastapi import Depends, Header, HTTPException

from core.config import settings
from infra.storage.object_storage import ObjectStorage
from infra.telegram.notifier import TelegramNotifier
from services.bank.dc_merchant import DCMerchantClient
from services.subscriptions.workflow import SubscriptionConfig, SubscriptionWorkflow
from services.vision.openai_vision import OpenAIVisionAnalyzer


log = structlog.get_logger(__name__)


@lru_cache(maxsize=1)
def get_notifier() -> TelegramNotifier | None:
    # without a token the API still works, notifications are skipped
    if not settings.telegram_bot_token:
        log.warning("bot_token_not_configured")
        return None
    return TelegramNotifier.from_token(settings.telegram_bot_token, timeout=settings.external_timeout_sec)


@lru_cache(maxsize=1)
def get_bank_client() -> DCMerchantClient:
    return DCMerchantClient(
        api_url=settings.dc_api_url,
        account=settings.dc_account,
        api_key=settings.dc_api_key,
        timeout=settings.external_timeout_sec,
    )


@lru_cache(maxsize=1)
def get_storage() -> ObjectStorage:
    return ObjectStorage()


@lru_cache(maxsize=1)
def get_vision() -> OpenAIVisionAnalyzer:
    return OpenAIVisionAnalyzer(api_key=settings.openai_api_key, model=settings.openai_model_vision)


def get_workflow(
    notifier: TelegramNotifier | None = Depends(get_notifier),
    bank: DCMerchantClient = Depends(get_bank_client),
    storage: ObjectStorage = Depends(get_storage),
) -> SubscriptionWorkflow:
    return SubscriptionWorkflow(
        SubscriptionConfig.from_settings(settings),
        notifier=notifier,
        bank=bank,
        storage=storage,
    )


def require_admin(x_admin_secret: str | None = Header(None)) -> None:
    # open when no secret is configured (local development)
    if not settings.admin_api_secret:
        return
    if not x_admin_secret or not hmac.compare_digest(x_admin_secret, settings.admin_api_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")
