"""Configuration settings for the reservation core and its HTTP shell."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with Pydantic validation."""

    # External API settings
    api_base_url: str = Field(
        default="http://localhost:5000/api",
        env="API_BASE_URL",
        description="Base endpoint of the booking persistence API and resource catalog"
    )

    http_timeout_seconds: float = Field(
        default=10.0,
        env="HTTP_TIMEOUT_SECONDS",
        description="Timeout applied to every outbound API call"
    )

    # Database settings
    database_url: str = Field(
        default="sqlite+aiosqlite:///./campspot.db",
        env="DATABASE_URL",
        description="Async database URL for persisted notifications and subscribers"
    )

    # Environment settings
    environment: str = Field(
        default="development",
        env="ENVIRONMENT",
        description="Application environment"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        env="LOG_LEVEL",
        description="Application log level"
    )

    # Security settings
    bearer_token_secret: str = Field(
        default="your-secret-key-here",
        env="BEARER_TOKEN_SECRET",
        description="Secret key for bearer token validation"
    )

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    # Server settings
    host: str = Field(
        default="0.0.0.0",
        env="HOST",
        description="Server host"
    )

    port: int = Field(
        default=8000,
        env="PORT",
        description="Server port"
    )

    # Sync settings
    sync_poll_interval_seconds: int = Field(
        default=30,
        env="SYNC_POLL_INTERVAL_SECONDS",
        description="Polling interval for booking snapshot refreshes"
    )

    sync_page_size: int = Field(
        default=50,
        description="Page size used when pulling a full booking snapshot"
    )

    sync_max_pages: int = Field(
        default=20,
        description="Upper bound on pages pulled per resource type per snapshot"
    )

    # Notification settings
    notification_history_capacity: int = Field(
        default=100,
        description="Number of notification events kept in the in-memory history"
    )

    notification_inbox_max_recipients: int = Field(
        default=1000,
        description="Number of recipients whose in-process inbox is kept"
    )

    default_admin_subscriber_id: str = Field(
        default="admin-default",
        description="Subscriber registered with every availability category at startup"
    )

    # Tracing
    otlp_endpoint: Optional[str] = Field(
        default=None,
        env="OTLP_ENDPOINT",
        description="OTLP gRPC endpoint for trace export"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_environments = ["development", "staging", "production"]
        if v.lower() not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level value."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins from string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the API base URL so paths can be appended."""
        return v.rstrip("/")

    @field_validator("sync_poll_interval_seconds", "notification_history_capacity", "notification_inbox_max_recipients")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject non-positive intervals and capacities."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @property
    def debug(self) -> bool:
        """Return True if in development mode."""
        return self.environment == "development"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Global settings instance
settings = Settings()
