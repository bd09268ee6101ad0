"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

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
    db_isolation_level: str = "SERIALIZABLE"  # ignored for SQLite
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # Redis (Celery broker)
    redis_url: str = "redis://localhost:6379/0"

    # API
    api_port: int = 8000
    api_host: str = "0.0.0.0"
    environment: str = "development"

    # Security
    jwt_secret_key: str = "dev-jwt-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Engine policy
    transaction_retries: int = 1
    direct_grant_daily_ceiling: Optional[int] = 5  # per manager, per user, per UTC day
    require_prior_spin_for_bonus: bool = True
    voucher_code_length: int = 12

    # Notifications
    notifications_enabled: bool = True
    notification_gateway_url: Optional[str] = None
    notification_secret: str = "dev-notification-secret"
    notification_timeout_seconds: int = 10
    notification_max_retries: int = 3

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@localhost:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    def validate_production_settings(self):
        """Validate settings for production environment."""
        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if self.jwt_secret_key.startswith("dev-"):
                raise ValueError(
                    "JWT_SECRET_KEY must be set in production. "
                    "Do not use the development default."
                )
            if self.notification_secret.startswith("dev-"):
                raise ValueError(
                    "NOTIFICATION_SECRET must be set in production. "
                    "Do not use the development default."
                )
            if self.database_url_computed.startswith("sqlite"):
                raise ValueError("SQLite is not supported outside development and test.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
