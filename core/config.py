from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Telegram
    telegram_bot_token: str | None = Field(None, alias="TELEGRAM_BOT_TOKEN")
    telegram_webhook_url: str | None = Field(None, alias="TELEGRAM_WEBHOOK_URL")
    telegram_webhook_secret: str | None = Field(None, alias="TELEGRAM_WEBHOOK_SECRET")
    admin_chat_id: int | None = Field(None, alias="ADMIN_CHAT_ID")

    # Admin HTTP endpoints (approve/reject/pending); open when unset
    admin_api_secret: str | None = Field(None, alias="ADMIN_API_SECRET")

    # AI providers
    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    openai_model_vision: str = Field("gpt-4o-mini", alias="OPENAI_MODEL_VISION")
    vision_cache_ttl_sec: int = Field(60 * 60 * 6, alias="VISION_CACHE_TTL_SEC")

    # Storage / DB / Cache
    database_url: str = Field(..., alias="DATABASE_URL")
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")

    s3_endpoint_url: str | None = Field(None, alias="S3_ENDPOINT_URL")
    s3_bucket: str | None = Field(None, alias="S3_BUCKET")
    s3_access_key_id: str | None = Field(None, alias="S3_ACCESS_KEY_ID")
    s3_secret_access_key: str | None = Field(None, alias="S3_SECRET_ACCESS_KEY")
    media_root: str = Field("data/objects", alias="MEDIA_ROOT")
    media_base_url: str = Field("http://127.0.0.1:8000/media", alias="MEDIA_BASE_URL")
    max_image_px: int = Field(800, alias="MAX_IMAGE_PX")
    receipt_max_bytes: int = Field(10 * 1024 * 1024, alias="RECEIPT_MAX_BYTES")

    # CORS / Web
    allowed_origins: str = Field("http://localhost:5173,http://localhost:3000", alias="ALLOWED_ORIGINS")

    # Telegram WebApp URL (optional)
    webapp_url: str | None = Field(None, alias="WEBAPP_URL")

    # WebApp JWT
    webapp_jwt_secret: str = Field("dev-webapp-secret", alias="WEBAPP_JWT_SECRET")
    webapp_jwt_ttl_minutes: int = Field(45, alias="WEBAPP_JWT_TTL_MINUTES")

    # Subscription
    premium_period_days: int = Field(90, alias="PREMIUM_PERIOD_DAYS")
    subscription_price: float = Field(30.0, alias="SUBSCRIPTION_PRICE")
    subscription_currency: str = Field("TJS", alias="SUBSCRIPTION_CURRENCY")
    free_daily_limit: int = Field(3, alias="FREE_DAILY_LIMIT")

    # DC merchant bank statement API
    dc_api_url: str = Field("http://109.74.70.55:98/onecapi", alias="DC_API_URL")
    dc_account: str | None = Field(None, alias="DC_ACCOUNT")
    dc_api_key: str | None = Field(None, alias="DC_API_KEY")
    dc_lookback_days: int = Field(7, alias="DC_LOOKBACK_DAYS")
    dc_amount_tolerance: float = Field(0.1, alias="DC_AMOUNT_TOLERANCE")
    # statement columns that may carry incoming funds, comma separated
    dc_incoming_columns: str = Field("debet,credit", alias="DC_INCOMING_COLUMNS")

    # Timeout for bot API and bank calls
    external_timeout_sec: float = Field(15.0, alias="EXTERNAL_TIMEOUT_SEC")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


settings = Settings()
