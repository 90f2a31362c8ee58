"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent

SANDBOX = "sandbox"
PRODUCTION = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --- Core ---
    APP_NAME: str = "Stablecoin Off-Ramp Partner API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = SANDBOX  # sandbox | production

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'offramp.db'}"
    STORAGE_BACKEND: str = "sql"  # sql | memory

    # --- Lifecycle windows ---
    SESSION_EXPIRY_MINUTES: int = 30
    QUOTE_EXPIRY_MINUTES: int = 15

    # --- FX ---
    EXCHANGE_RATE_API_KEY: str = ""
    EXCHANGE_RATE_API_BASE_URL: str = "https://v6.exchangerate-api.com/v6"
    FALLBACK_USD_INR_RATE: str = "83.40"
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # --- KYC providers ---
    CASHFREE_CLIENT_ID: str = ""
    CASHFREE_CLIENT_SECRET: str = ""
    CASHFREE_PUBLIC_KEY: str = ""
    CASHFREE_BASE_URL: str = "https://api.cashfree.com/verification"
    SUREPASS_API_TOKEN: str = ""
    SUREPASS_BASE_URL: str = "https://kyc-api.surepass.app/api/v1"
    KYC_REQUIRED_METHODS: list[str] = ["aadhaar", "pan"]
    KYC_MAX_REJECTIONS: int = 3
    NAME_MATCH_THRESHOLD: float = 0.8

    # --- Transactions ---
    DEPOSIT_TOLERANCE_PCT: str = "0.5"

    # --- Webhooks ---
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0
    WEBHOOK_MAX_ATTEMPTS: int = 3
    WEBHOOK_RETRY_BASE_SECONDS: int = 30
    WEBHOOK_RETRY_MAX_SECONDS: int = 3600
    WEBHOOK_LEASE_SECONDS: int = 60
    WEBHOOK_SWEEP_ENABLED: bool = True
    WEBHOOK_SWEEP_INTERVAL_SECONDS: int = 30
    WEBHOOK_SWEEP_BATCH_SIZE: int = 50

    # --- Security ---
    ADMIN_API_KEY: str = ""
    CORS_ORIGINS: list[str] = ["*"]
    VERIFY_RATE_LIMIT_REQUESTS: int = 20
    VERIFY_RATE_LIMIT_WINDOW: int = 60

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    @property
    def is_sandbox(self) -> bool:
        return self.ENVIRONMENT != PRODUCTION


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
