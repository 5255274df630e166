from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str
    SECRET_KEY: str = "dev-insecure-key-change-in-production"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    LOG_LEVEL: str = "INFO"

    # Allowed browser origins
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Billing
    CURRENCY_QUANTUM: Decimal = Decimal("1")  # bills are rounded to whole rupees
    MAX_TAX_PERCENT: Decimal = Decimal("100")
    CONSUMABLE_PRESCRIPTION_STATUSES: list[str] = ["active"]
    INVENTORY_CAS_MAX_RETRIES: int = 3
    BILL_NUMBER_MAX_ATTEMPTS: int = 3
    SETTLEMENT_DEADLINE_SECONDS: float | None = 30.0
    STALE_PENDING_BILL_MINUTES: int = 30

    # Redis / Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # SMTP
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    NOTIFICATION_ENABLED: bool = False
    OPERATOR_ALERT_EMAIL: str = ""


settings = Settings()  # type: ignore[call-arg]
