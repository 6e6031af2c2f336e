import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Application database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Session cookie / JWT
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    AUTH_COOKIE_NAME: str = "auth_token"
    AUTH_TOKEN_TTL_DAYS: int = 7

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # External (user supplied) MongoDB integrations
    EXTERNAL_MONGO_TIMEOUT_MS: int = 5000

    # TriboPay PIX gateway
    TRIBOPAY_BASE_URL: str = "https://api.tribopay.com.br/api/public/v1"
    TRIBOPAY_API_TOKEN: Optional[str] = None
    TRIBOPAY_OFFER_HASH_CLIENT: Optional[str] = None
    TRIBOPAY_POSTBACK_URL: Optional[str] = None
    TRIBOPAY_TIMEOUT_SECONDS: float = 15.0

    # Web push (VAPID)
    VAPID_PUBLIC_KEY: Optional[str] = None
    VAPID_PRIVATE_KEY: Optional[str] = None
    VAPID_SUBJECT: str = "mailto:admin@example.com"

    # Plans
    PLAN_DURATION_DAYS: int = 30

    # Dashboard "today" boundary (America/Sao_Paulo has no DST)
    DASHBOARD_UTC_OFFSET_HOURS: int = -3

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("keyforge")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "JWT_SECRET",
        "TRIBOPAY_API_TOKEN",
        "TRIBOPAY_OFFER_HASH_CLIENT",
        "VAPID_PUBLIC_KEY",
        "VAPID_PRIVATE_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
