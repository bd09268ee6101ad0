"""Worker settings - consistent with API settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Worker settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "spinwheel"
    postgres_password: str = "spinwheel_dev_password"
    postgres_db: str = "spinwheel"
    postgres_port: int = 5432

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Environment
    environment: str = "development"

    # Notification gateway (WhatsApp)
    notification_gateway_url: Optional[str] = None
    notification_secret: str = "dev-notification-secret"
    notification_timeout_seconds: int = 10
    notification_max_retries: int = 3

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@localhost:{self.postgres_port}/{self.postgres_db}"
        )

    def validate_production_settings(self):
        """Validate settings for production environment."""
        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if not self.notification_gateway_url:
                raise ValueError("NOTIFICATION_GATEWAY_URL is required in production.")
            if self.notification_secret.startswith("dev-"):
                raise ValueError(
                    "NOTIFICATION_SECRET must be set in production. "
                    "Do not use the development default."
                )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
