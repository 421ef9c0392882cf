"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Party Rent Payments API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Database - REQUIRED
    DATABASE_URL: str

    # Redis - REQUIRED (Celery broker and result backend)
    REDIS_URL: str

    # Security - REQUIRED (no defaults for sensitive values)
    SECRET_KEY: str

    # CORS
    CORS_ORIGINS: list[str] = []

    # Base URL used for PayPal return/cancel/onboarding callbacks
    APP_BASE_URL: str = "http://localhost:3000"

    # PayPal
    # PAYPAL_MODE: sandbox or live
    PAYPAL_MODE: str = "sandbox"
    PAYPAL_SANDBOX_CLIENT_ID: str = ""
    PAYPAL_SANDBOX_CLIENT_SECRET: str = ""
    PAYPAL_LIVE_CLIENT_ID: str = ""
    PAYPAL_LIVE_CLIENT_SECRET: str = ""
    PAYPAL_PARTNER_ID: str = ""
    PAYPAL_PARTNER_ATTRIBUTION_ID: Optional[str] = None
    PAYPAL_PLATFORM_MERCHANT_ID: str = ""
    PAYPAL_BRAND_NAME: str = "AllPartyRent"
    PAYPAL_REQUEST_TIMEOUT_SECONDS: float = 15.0
    PAYPAL_CONNECT_TIMEOUT_SECONDS: float = 5.0

    # Payments
    PAYMENT_CURRENCY: str = "USD"
    ESCROW_ENABLED: bool = True
    ESCROW_HOLD_HOURS: int = 24
    PROVIDER_REVIEW_HOURS: int = 24
    ESCROW_SWEEP_INTERVAL_SECONDS: int = 300
    FEE_SETTINGS_CACHE_SECONDS: int = 300

    @property
    def paypal_is_sandbox(self) -> bool:
        return self.PAYPAL_MODE.lower() != "live"

    @property
    def paypal_client_id(self) -> str:
        if self.paypal_is_sandbox:
            return self.PAYPAL_SANDBOX_CLIENT_ID
        return self.PAYPAL_LIVE_CLIENT_ID

    @property
    def paypal_client_secret(self) -> str:
        if self.paypal_is_sandbox:
            return self.PAYPAL_SANDBOX_CLIENT_SECRET
        return self.PAYPAL_LIVE_CLIENT_SECRET

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
