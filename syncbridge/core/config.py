# syncbridge/core/config.py

import os
from functools import lru_cache
from typing import List, Optional, Annotated
from pydantic import ConfigDict, BeforeValidator
from pydantic_settings import BaseSettings, NoDecode


def _parse_email_list(value):
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        return [email.strip() for email in value.split(",") if email.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(email).strip() for email in value if str(email).strip()]
    return []


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""

    # Environment
    ENVIRONMENT: str = "development"

    # Shopify Admin API (Platform A, USD)
    SHOPIFY_SHOP_URL: Optional[str] = None
    SHOPIFY_ADMIN_API_ACCESS_TOKEN: Optional[str] = None
    SHOPIFY_API_VERSION: str = "2025-04"
    SHOPIFY_LOCATION_ID: Optional[str] = None
    SHOPIFY_WEBHOOK_SECRET: str = ""

    # Naver Commerce API (Platform B, KRW)
    NAVER_API_BASE_URL: str = "https://api.commerce.naver.com"
    NAVER_CLIENT_ID: str = ""
    NAVER_CLIENT_SECRET: str = ""
    NAVER_WEBHOOK_SECRET: str = ""
    NAVER_REQUESTS_PER_SECOND: float = 2.0

    # Webhooks
    WEBHOOK_SIGNATURE_BYPASS: bool = False  # Ignored when ENVIRONMENT=production
    WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS: int = 300
    WEBHOOK_PROCESSING_MODE: str = "inline"  # inline | queue
    WEBHOOK_LOG_RETENTION_DAYS: int = 30
    LEDGER_RETENTION_DAYS: int = 365

    # Outbound platform calls
    PLATFORM_REQUEST_TIMEOUT: float = 30.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_INITIAL_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 30.0
    RETRY_BACKOFF_FACTOR: float = 2.0

    # Queue consumer
    QUEUE_CONCURRENCY: int = 4
    QUEUE_MAX_DELIVERY_ATTEMPTS: int = 5
    QUEUE_REDELIVERY_DELAY: float = 5.0

    # Pricing
    BASE_CURRENCY: str = "USD"
    LOCAL_CURRENCY: str = "KRW"
    MIN_MARGIN_MULTIPLIER: float = 1.0
    MAX_MARGIN_MULTIPLIER: float = 2.0
    DEFAULT_CONFLICT_POLICY: str = "naver_priority"
    EXCHANGE_RATE_API_URL: str = "https://api.exchangerate-api.com/v4/latest"
    EXCHANGE_RATE_VALIDITY_HOURS: int = 24
    MANUAL_RATE_VALIDITY_DAYS: int = 7

    # Drift check
    DRIFT_PRICE_THRESHOLD_PERCENT: float = 10.0
    DRIFT_CHECK_DELAY_SECONDS: float = 0.5
    DRIFT_AUTO_CORRECT: bool = False
    PRICE_PENDING_TIMEOUT_MINUTES: int = 30

    # Alerts
    LOW_STOCK_THRESHOLD: int = 10

    # Scheduler (standard 5-field crontab strings)
    SYNC_SCHEDULE_ENABLED: bool = False
    CRON_FULL_SYNC: str = "0 3 * * *"
    CRON_INVENTORY_SYNC: str = "0 * * * *"
    CRON_PRICE_SYNC: str = "0 */6 * * *"
    CRON_DRIFT_CHECK: str = "30 */2 * * *"
    CRON_LOW_STOCK: str = "0 8 * * *"
    CRON_EXCHANGE_RATE: str = "0 9 * * *"
    CRON_CLEANUP: str = "0 2 * * *"

    # Email notifications
    # Comma-separated in the environment
    NOTIFICATION_EMAILS: Annotated[List[str], NoDecode, BeforeValidator(lambda v: _parse_email_list(v))] = []

    # SMTP / Email
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT: int = 30
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_FROM_NAME: Optional[str] = None

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
