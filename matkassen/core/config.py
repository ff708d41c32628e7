"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.4.0"

    # Database
    DATABASE_URL: str = "sqlite+pysqlite:///./matkassen.db"

    # All local-day arithmetic (capacity, double booking, templates) uses this zone
    TIMEZONE: str = "Europe/Stockholm"

    # Public links in outgoing SMS
    BASE_URL: str = "http://localhost:3000"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # HelloSMS gateway
    HELLO_SMS_API_URL: str = "https://api.hellosms.se/api/v1/sms/send"
    HELLO_SMS_BALANCE_URL: str = "https://api.hellosms.se/api/v1/account/balance"
    HELLO_SMS_USERNAME: str = ""
    HELLO_SMS_PASSWORD: str = ""
    HELLO_SMS_FROM: str = "Matkassen"
    HELLO_SMS_TEST_MODE: bool | None = None  # None: on everywhere except production
    HELLO_SMS_TIMEOUT_SECONDS: float = 10.0

    # Provider delivery callbacks
    SMS_CALLBACK_SECRET: str = ""

    # Background worker
    SMS_SEND_INTERVAL: str = "5 minutes"
    SMS_SEND_BATCH_SIZE: int = 5
    ANONYMIZATION_SCHEDULE: str = "0 2 * * 0"
    ANONYMIZATION_INACTIVE_DURATION: str = "1 year"

    # Observability
    SENTRY_DSN: str = ""

    # Rate limiting (requests per minute, 0 disables)
    RATE_LIMIT_WEBHOOK: int = 120

    # Admin routes; empty disables the key check outside production
    ADMIN_API_KEY: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() in ("prod", "production")

    @property
    def sms_test_mode(self) -> bool:
        if self.HELLO_SMS_TEST_MODE is None:
            return not self.is_production
        return self.HELLO_SMS_TEST_MODE


settings = Settings()
