"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything required is missing.
The PMS integration is optional: an empty PMS_DATABASE_URL disables it.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    app_secret_key: str
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (locks + worker heartbeats)
    redis_url: str = "redis://localhost:6379/0"

    # Admin API
    dashboard_jwt_secret: str = ""
    allowed_origins: str = ""  # Comma-separated CORS origins

    # Encryption of source secrets at rest (Fernet key)
    encryption_key: str = ""

    # Sentry
    sentry_dsn: str = ""

    # Income webhooks
    webhook_timeout_seconds: float = 30.0
    # When true, authType=both requires both credentials and a source without
    # a configured secret rejects every delivery.
    strict_webhook_auth: bool = False

    # PMS bridge (read-only external performance database)
    pms_database_url: str = ""
    pms_pool_size: int = 3
    pms_sync_enabled: bool = False
    pms_sync_interval_seconds: int = 3600
    pms_default_start_month: str = "2025-07"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
