from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Smart Waste Special Collections API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "noreply@smartwaste.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    # When False, emails are only queued in email_logs; the worker sends them.
    EMAIL_ENABLED: bool = True
    AUTHORITY_NOTIFY_EMAIL: str = ""

    CLIENT_BASE_URL: str = "http://localhost:5173"  # resident portal, used for checkout return URLs

    # Pricing
    CURRENCY: str = "LKR"
    TAX_RATE_PERCENT: float = 3.0
    ITEM_POLICIES_FILE: str = ""  # optional JSON list overriding the built-in catalogue

    # Slot grid (local time in SLOT_TIMEZONE)
    SLOT_DAYS_AHEAD: int = 5
    SLOT_START_HOUR: int = 8
    SLOT_END_HOUR: int = 17
    SLOT_BUCKET_MINUTES: int = 120
    SLOT_CAPACITY: int = 3
    SLOT_EXCLUDE_WEEKENDS: bool = False
    SLOT_TIMEZONE: str = "Asia/Colombo"

    # Stripe Checkout
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    CHECKOUT_SESSION_EXPIRY_MINUTES: int = 35  # Stripe accepts 30 minutes to 24 hours after creation
    CHECKOUT_SUCCESS_PATH: str = "/schedule/payment/result?status=success&session_id={CHECKOUT_SESSION_ID}"
    CHECKOUT_CANCEL_PATH: str = "/schedule/payment/result?status=cancelled&session_id={CHECKOUT_SESSION_ID}"

    # If True, skip Stripe and use the in-memory sandbox gateway (for dev when Stripe isn't configured)
    PAYMENT_SANDBOX: bool = False
    PAYMENT_SANDBOX_OUTCOME: str = "success"  # success|pending|failed|cancelled


settings = Settings()
