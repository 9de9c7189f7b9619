from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
import logging
import os

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """A required secret or setting is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    yoco_secret_key: Optional[str] = None
    yoco_webhook_secret: Optional[str] = None
    yoco_api_base_url: str = "https://payments.yoco.com"
    public_base_url: str = "http://127.0.0.1:8000"
    webhook_path: str = "/yoco-webhook-receiver"
    provider_timeout_seconds: float = 15.0
    provider_max_retries: int = 3
    webhook_tolerance_seconds: int = 180
    pending_order_ttl_seconds: int = 900
    log_level: str = "INFO"

    def require_webhook_secret(self) -> str:
        if not self.yoco_webhook_secret:
            raise ConfigurationError("YOCO_WEBHOOK_SECRET is not set")
        if not self.yoco_webhook_secret.startswith("whsec_"):
            raise ConfigurationError("YOCO_WEBHOOK_SECRET must start with 'whsec_'")
        return self.yoco_webhook_secret


def load_settings() -> Settings:
    """Build settings from the environment."""
    return Settings(
        yoco_secret_key=os.getenv("YOCO_SECRET_KEY") or None,
        yoco_webhook_secret=os.getenv("YOCO_WEBHOOK_SECRET") or None,
        yoco_api_base_url=os.getenv("YOCO_API_BASE_URL", "https://payments.yoco.com").rstrip("/"),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "http://127.0.0.1:8000").rstrip("/"),
        webhook_path=os.getenv("WEBHOOK_PATH", "/yoco-webhook-receiver"),
        provider_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "15")),
        provider_max_retries=int(os.getenv("PROVIDER_MAX_RETRIES", "3")),
        webhook_tolerance_seconds=int(os.getenv("WEBHOOK_TOLERANCE_SECONDS", "180")),
        pending_order_ttl_seconds=int(os.getenv("PENDING_ORDER_TTL_SECONDS", "900")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, read once. FastAPI dependency."""
    return load_settings()


def report_secrets(settings: Settings) -> None:
    """Log which secrets are configured at startup. Only key prefixes are logged."""
    key = settings.yoco_secret_key
    if key and (key.startswith("sk_live_") or key.startswith("sk_test_")):
        key_type = "LIVE" if key.startswith("sk_live_") else "TEST"
        logger.info("YOCO_SECRET_KEY configured: %s... (%s key)", key[:8], key_type)
    elif key:
        logger.critical("YOCO_SECRET_KEY has an unexpected format; checkout creation will likely fail")
    else:
        logger.critical("YOCO_SECRET_KEY is not set; /create-checkout will answer 500")

    try:
        settings.require_webhook_secret()
        logger.info("YOCO_WEBHOOK_SECRET configured")
    except ConfigurationError as e:
        logger.critical("%s; webhook deliveries will answer 500", e)
