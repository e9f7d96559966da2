import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Dates
    DEFAULT_TIMEZONE: str = "UTC"  # explicit fallback, never server-local time
    DEFAULT_GRACE_PERIOD_DAYS: int = 7
    STREAK_SAFETY_CAP: int = 3660  # ~10 years of daily entries

    # Auth (Bearer JWT when set, X-User-Id header otherwise)
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_AUDIENCE: Optional[str] = None

    # Email queue
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "Gritful <noreply@gritful.app>"
    APP_URL: str = "https://www.gritful.app"
    EMAIL_QUEUE_ENABLED: bool = False
    EMAIL_QUEUE_BATCH_SIZE: int = 10
    EMAIL_MAX_RETRIES: int = 3
    EMAIL_WORKER_LOOP_SECONDS: int = 300
    EMAIL_SEND_TIMEOUT_SECONDS: int = 10

    # CORS
    CORS_ALLOWED_ORIGINS: str = "http://localhost:3000"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("gritful")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = ["DATABASE_URL"]
    if getattr(cfg, "EMAIL_QUEUE_ENABLED", False):
        required_keys.append("RESEND_API_KEY")

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
