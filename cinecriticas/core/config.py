"""Application configuration loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Allowed URL schemes for DATABASE_URL (module-level so validators can use it).
VALID_DATABASE_URL_PREFIXES = (
    "sqlite://",
    "postgresql://",
    "postgresql+psycopg2://",
    "postgres://",
    "postgres+psycopg2://",
)

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class Settings(BaseSettings):
    """Validated application settings from env and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    APP_ENV: Literal["dev", "prod"] = "dev"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_V1_PREFIX: str = "/api/v1"

    # SQLite for local use; PostgreSQL in production
    DATABASE_URL: str = "sqlite:///./cinecriticas.db"
    # Create missing tables on startup instead of running Alembic (local use only)
    DB_AUTO_CREATE: bool = False

    # JWT bearer tokens (also carried in the httpOnly token cookie)
    JWT_SECRET: SecretStr = SecretStr("change-me-in-production")
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 1440

    # Server-side sessions: "memory" keeps them in-process, "database" in web_sessions
    SESSION_BACKEND: Literal["memory", "database"] = "memory"
    SESSION_MAX_AGE_MINUTES: int = 1440
    SESSION_COOKIE_NAME: str = "sid"
    TOKEN_COOKIE_NAME: str = "token"
    # Secure cookies are always on in prod; set True to force them in dev behind HTTPS
    COOKIE_SECURE: bool = False
    COOKIE_SAMESITE: Literal["lax", "strict", "none"] = "lax"

    # Comma-separated list of allowed origins; empty disables CORS
    CORS_ORIGINS: str = ""

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = (v or "").strip().upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(VALID_LOG_LEVELS)}")
        return level

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("DATABASE_URL must be set and non-empty")
        if not any(v.startswith(prefix) for prefix in VALID_DATABASE_URL_PREFIXES):
            raise ValueError(
                "DATABASE_URL must be a SQLite or PostgreSQL URL "
                "(e.g. sqlite:///./cinecriticas.db or postgresql+psycopg2://...)"
            )
        return v.strip()

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value() or not v.get_secret_value().strip():
            raise ValueError("JWT_SECRET must be set and non-empty")
        return v

    @field_validator("JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("JWT_ALGORITHM must be set and non-empty")
        return v.strip()

    @field_validator("JWT_EXPIRE_MINUTES", "SESSION_MAX_AGE_MINUTES")
    @classmethod
    def validate_lifetime_minutes(cls, v: int) -> int:
        if v < 1 or v > 10080:
            raise ValueError("Token and session lifetimes must be between 1 and 10080 minutes")
        return v

    @field_validator("SESSION_COOKIE_NAME", "TOKEN_COOKIE_NAME")
    @classmethod
    def validate_cookie_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Cookie names must be set and non-empty")
        return v.strip()

    @property
    def cookie_secure(self) -> bool:
        # Browsers reject SameSite=None cookies without Secure
        return self.COOKIE_SECURE or self.APP_ENV == "prod" or self.COOKIE_SAMESITE == "none"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance (safe to call from dependencies)."""
    return Settings()


settings = get_settings()
