"""Configuration management for taskun."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="data/taskun.db", description="Path to the SQLite database file")

    # Session signing
    secret_key: str = Field(default="dev-secret-change-me", description="Secret used to sign session tokens")
    is_production: bool = Field(default=False, description="Enables secure cookies and strict startup checks")

    # Slack Configuration
    slack_webhook_url: str | None = Field(default=None, description="Incoming webhook URL for task notifications")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Redis Configuration (optional)
    redis_url: str | None = Field(
        default=None, description="Redis URL used to fan change events out across workers (e.g., redis://localhost:6379)"
    )

    # Calendar day boundaries for due-date windows
    timezone: str = Field(default="Asia/Tokyo", description="IANA timezone used to decide what 'today' is")

    # Scheduler
    enable_scheduler: bool = Field(default=True, description="Run the due-soon reminder job")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30
    SLACK_TIMEOUT_SECONDS: int = 10

    # Pagination
    TASKS_PER_PAGE: int = 10
    DEFAULT_PER_PAGE_LIMIT: int = 100  # Batch size when a query has to read every matching row

    # Due-date windows
    DUE_SOON_DAYS: int = 5  # Inclusive: today through today + 5

    # Sessions
    SESSION_MAX_AGE_SECONDS: int = 86400 * 7
    SESSION_COOKIE_NAME: str = "session"

    # Change feed
    CHANGE_FEED_QUEUE_MAXLEN: int = 256
    CHANGE_FEED_CHANNEL_PREFIX: str = "taskun:tasks"
    SSE_KEEPALIVE_SECONDS: int = 15

    # Scheduler Configuration
    DAILY_REMINDER_HOUR: int = 8  # 8am

    # Outbound notification retries
    NOTIFY_MAX_RETRIES: int = 3
    NOTIFY_RETRY_DELAY_SECONDS: float = 1.0

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10  # Maximum connections in Redis connection pool


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
