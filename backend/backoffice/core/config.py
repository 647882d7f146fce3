from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    database_url: str

    # Public links (/g/{token}/..., /m/{token}/...)
    APP_BASE_URL: str = "http://localhost:8000"
    VENUE_TIMEZONE: str = "Europe/London"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # Shared secrets for machine callers
    CRON_SECRET: str = ""
    INTERNAL_API_SECRET: str = ""

    # Manager notifications (bot-service /notify)
    MANAGER_CHAT_ID: int = 0
    BOT_SERVICE_URL: str = ""
    BOT_SERVICE_SECRET: str = ""

    # Guest token throttle
    GUEST_TOKEN_THROTTLE_WINDOW_SECONDS: int = 10 * 60
    GUEST_TOKEN_THROTTLE_FINGERPRINT_MULTIPLIER: int = 5
    GUEST_TOKEN_VIEW_MAX_ATTEMPTS: int = 60
    GUEST_TOKEN_ACTION_MAX_ATTEMPTS: int = 8
    # X-Forwarded-For entries appended by our own proxies; 0 trusts only the socket peer
    GUEST_TOKEN_TRUSTED_PROXY_HOPS: int = 1

    # Charge approvals
    CHARGE_WARNING_TOTAL_THRESHOLD: Decimal = Decimal("200")
    CHARGE_WARNING_PER_HEAD_THRESHOLD: Decimal = Decimal("50")
    # Largest amount a manager may approve in one charge
    CHARGE_MAX_AMOUNT: Decimal = Decimal("5000.00")

    # Table deposits
    TABLE_DEPOSIT_PER_PERSON: Decimal = Decimal("10.00")
    DEFAULT_CURRENCY: str = "GBP"

    # Daily digest
    CHARGE_DIGEST_HOUR: int = 9

    # Comma-separated origins allowed to call the API from a browser
    CORS_ORIGINS: str = ""

    LOG_LEVEL: str = "INFO"

    def app_base_url(self) -> str:
        return (self.APP_BASE_URL or "http://localhost:8000").rstrip("/")

    def stripe_configured(self) -> bool:
        return bool((self.STRIPE_SECRET_KEY or "").strip())

    def cors_origins(self) -> list[str]:
        return [o.strip() for o in (self.CORS_ORIGINS or "").split(",") if o.strip()]


settings = Settings()
