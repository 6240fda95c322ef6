"""Application configuration using Pydantic Settings"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("postgres", "rest", "memory")


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Store
    store_backend: str = Field(default="postgres", description="postgres | rest | memory")
    database_url: str = Field(default="", description="PostgreSQL database URL")
    database_ssl: str | None = Field(default="require", description="asyncpg ssl mode")
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_anon_key: str = Field(default="", description="Supabase anon (public) key")
    supabase_service_key: str = Field(
        default="", description="Service-role key for background maintenance"
    )

    # JWT verification of Supabase access tokens
    jwt_secret_key: str = Field(..., description="Supabase JWT secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_audience: str = Field(default="authenticated", description="Expected JWT audience")

    # Polling cadence (seconds)
    queue_poll_interval: float = Field(default=2.0, gt=0)
    queue_status_interval: float = Field(default=5.0, gt=0)
    rematch_poll_interval: float = Field(default=3.0, gt=0)
    poll_max_interval: float = Field(default=30.0, gt=0)

    # Matchmaking
    search_timeout: float = Field(default=300.0, gt=0, description="Give up searching after")
    queue_stale_after: float = Field(default=600.0, gt=0)
    stale_purge_interval: float = Field(default=60.0, gt=0)
    enable_stale_purge: bool = Field(default=True)
    max_rating_gap: int | None = Field(default=None, ge=0)
    default_rating: int = Field(default=1000)

    # Rematch
    rematch_ttl: float = Field(default=300.0, gt=0, description="Pending request lifetime")
    profile_cache_ttl: float = Field(default=60.0, gt=0)

    # Server
    frontend_url: str = Field(default="http://localhost:5173", description="Frontend URL for CORS")
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in STORE_BACKENDS:
            raise ValueError(f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}")
        return v_lower

    @model_validator(mode="after")
    def validate_backend_settings(self) -> "Settings":
        if self.store_backend == "postgres" and not self.database_url.startswith(
            ("postgresql://", "postgres://")
        ):
            raise ValueError("DATABASE_URL must start with 'postgresql://' for the postgres store")
        if self.store_backend == "rest" and not (self.supabase_url and self.supabase_anon_key):
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY are required for the rest store")
        return self

    @property
    def cors_origins(self) -> list[str]:
        return [self.frontend_url]

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()  # type: ignore[call-arg]
