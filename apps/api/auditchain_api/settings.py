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
    postgres_user: str = "auditchain"
    postgres_password: str = "auditchain_dev_password"
    postgres_db: str = "auditchain"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    # Bounds connect, pool checkout and (on PostgreSQL) every statement
    store_timeout_seconds: float = 5.0

    # External ledger delegate (unset = always chain locally)
    ledger_delegate_url: Optional[str] = None
    ledger_timeout_seconds: float = 5.0

    # Per-session serialization of local chain writes
    session_lock_backend: str = "local"  # local, redis
    session_lock_timeout_seconds: float = 10.0
    chain_conflict_retries: int = 3

    # Redis (only used by the redis lock backend)
    redis_url: str = "redis://localhost:6379/0"

    # API
    api_port: int = 8000
    api_host: str = "0.0.0.0"
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

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
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def uses_redis_locks(self) -> bool:
        """Check if per-session locks are held in Redis."""
        return self.session_lock_backend.lower() == "redis"

    def validate_production_settings(self):
        """Validate settings for production environment."""
        env = self.environment.lower()
        if self.session_lock_backend.lower() not in ("local", "redis"):
            raise ValueError(
                f"SESSION_LOCK_BACKEND must be 'local' or 'redis', got {self.session_lock_backend!r}"
            )
        if env not in ("development", "test", "dev"):
            if self.database_url_computed.startswith("sqlite"):
                raise ValueError(
                    "SQLite is not allowed outside development. "
                    "Set DATABASE_URL to a PostgreSQL instance."
                )
            if not self.database_url and self.postgres_password == "auditchain_dev_password":
                raise ValueError(
                    "POSTGRES_PASSWORD must be set in production. "
                    "Do not use default credentials."
                )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
