from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql://localhost:5432/inbox_scheduler"

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 3
    DB_POOL_MAX_SIZE: int = 12
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # Mail transport (Mailgun)
    MAILGUN_API_KEY: str | None = None
    MAILGUN_DOMAIN: str = "mail.example.com"
    MAILGUN_API_BASE_URL: str = "https://api.mailgun.net/v3"
    INBOUND_WEBHOOK_SECRET: str | None = None

    # Assistant identity
    ASSISTANT_EMAIL_ADDRESS: str = "assistant@mail.example.com"
    ASSISTANT_NAME: str = "Scheduling Assistant"
    PRODUCT_NAME: str = "Inbox Scheduler"
    FOUNDER_NAME: str = "The team"
    FOUNDER_EMAIL: str | None = None
    SIGNUP_URL: str = "https://example.com/signup"

    # Agent (OpenAI)
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_THIRD_PARTY_MODEL: str = "gpt-4o-mini"
    OPENAI_MAX_TOKENS: int = 1500
    OPENAI_TEMPERATURE: float = 0.2
    OPENAI_TIMEOUT_SECONDS: float = 60.0
    OPENAI_MAX_RETRIES: int = 3
    AGENT_MAX_STEPS: int = 10

    # Exchange rules
    MAX_MESSAGES_IN_EXCHANGE: int = 25
    EXCHANGE_MAX_AGE_DAYS: int = 30
    BODY_MAX_LENGTH: int = 1000

    # Slot search
    SLOT_GRANULARITY_MINUTES: int = 15
    MAX_SLOT_RESULTS: int = 3
    MAX_AVAILABILITY_WINDOW_DAYS: int = 90
    DEFAULT_TIMEZONE: str = "UTC"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def own_domain(self) -> str:
        """
        Domain the assistant sends from, e.g.
        assistant@mail.example.com -> mail.example.com
        """
        _, _, domain = self.ASSISTANT_EMAIL_ADDRESS.rpartition("@")
        return (domain or self.MAILGUN_DOMAIN).lower()

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # Smaller pool for local development
            config.update(
                {
                    "min_size": min(self.DB_POOL_MIN_SIZE, 2),
                    "max_size": min(self.DB_POOL_MAX_SIZE, 5),
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
