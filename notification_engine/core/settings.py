from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, extra="ignore")

    NOTIFY_ENV: str = "development"
    NOTIFY_MODE: str = "api"
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    API_CORS_ORIGINS: str = "http://localhost:3000"

    NOTIFY_MAX_RETRIES: int = 3
    NOTIFY_RETRY_BACKOFF_SECONDS: int = 60
    NOTIFY_RETENTION_DAYS: int = 30
    DISPATCH_MAX_CONCURRENCY: int = 0

    SCHEDULER_ENABLED: bool = False
    SCHEDULER_PROMOTION_INTERVAL_SECONDS: int = 60
    SCHEDULER_ARCHIVAL_INTERVAL_SECONDS: int = 86400
    SCHEDULER_BATCH_LIMIT: int = 500

    STORE_BACKEND: str = "memory"
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str | None = None
    NOTIFICATIONS_TABLE: str = "notifications"
    IN_APP_TABLE: str = "in_app_messages"
    TEMPLATES_TABLE: str = "notification_templates"
    TEMPLATES_PATH: str | None = None

    EMAIL_FROM: str | None = None
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMS_GATEWAY_URL: str | None = None
    SMS_GATEWAY_TOKEN: str | None = None
    PUSH_GATEWAY_URL: str | None = None
    PUSH_GATEWAY_TOKEN: str | None = None
    CHANNEL_HTTP_TIMEOUT_SECONDS: float = 10.0

    EVENT_WEBHOOK_URL: str | None = None

    @model_validator(mode="after")
    def validate_backends(self) -> "Settings":
        backend = self.STORE_BACKEND.strip().lower()
        if backend not in {"memory", "supabase"}:
            raise ValueError("STORE_BACKEND must be 'memory' or 'supabase'")
        if backend == "supabase":
            if not (self.SUPABASE_URL or "").strip():
                raise ValueError("SUPABASE_URL must be configured for the supabase store")
            if not (self.SUPABASE_SERVICE_ROLE_KEY or "").strip():
                raise ValueError("SUPABASE_SERVICE_ROLE_KEY must be configured for the supabase store")
        if self.SMTP_USE_SSL and self.SMTP_USE_TLS:
            raise ValueError("SMTP_USE_SSL and SMTP_USE_TLS cannot both be enabled")
        if self.NOTIFY_MAX_RETRIES < 0:
            raise ValueError("NOTIFY_MAX_RETRIES must not be negative")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.API_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
