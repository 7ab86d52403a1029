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

    # Admin access (tier switcher, token grants)
    ADMIN_KEY: Optional[str] = None

    # Starter weekly AI credits
    STARTER_WEEKLY_CREDITS: int = 10
    STARTER_CREDIT_RESET_DAYS: int = 7

    # Trial
    TRIAL_LENGTH_DAYS: int = 7

    # Plan generation dedup window
    GENERATION_DEDUP_WINDOW_SECONDS: int = 120

    # Usage period history kept before the archival job flags rows
    USAGE_PERIOD_RETENTION_MONTHS: int = 12

    # Upgrade links rendered in quota messages
    PRICING_URL: str = "/pricing"

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
    log = logger or logging.getLogger("tiergate")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "ADMIN_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.STARTER_WEEKLY_CREDITS < 0 or cfg.STARTER_CREDIT_RESET_DAYS <= 0:
        message = "Starter credit settings must be non-negative with a positive reset interval"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
