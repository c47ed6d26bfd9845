"""Application settings and logging configuration."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from iam_core.core.tokens import REFRESH_TOKEN_TTL_SECONDS

_LOG_CONTEXT: dict[str, str] = {"environment": "development", "service": "iam-core"}
_MIN_SECRET_LENGTH = 32


class AppSettings(BaseModel):
    """Application identity and runtime settings."""

    environment: Literal["development", "staging", "production"] = "development"
    service: str = "iam-core"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = Field(description="Async SQLAlchemy URL using asyncpg or aiosqlite driver.")
    lookup_timeout_seconds: float = Field(default=5.0, gt=0)

    @field_validator("url")
    @classmethod
    def validate_async_url(cls, value: str) -> str:
        """Ensure SQLAlchemy uses an async driver."""
        if not value.startswith(("postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "database.url must start with 'postgresql+asyncpg://' or 'sqlite+aiosqlite://'."
            )
        return value


class RedisSettings(BaseModel):
    """Redis connection settings."""

    url: str | None = Field(default=None, description="Redis URL.")

    @field_validator("url")
    @classmethod
    def validate_redis_url(cls, value: str | None) -> str | None:
        """Ensure the Redis URL uses a supported scheme."""
        if value is not None and not value.startswith(("redis://", "rediss://")):
            raise ValueError("redis.url must start with 'redis://' or 'rediss://'.")
        return value


class JWTSettings(BaseModel):
    """Token signing secrets; lifetimes are fixed by the token service."""

    access_secret: SecretStr
    refresh_secret: SecretStr

    @field_validator("access_secret", "refresh_secret")
    @classmethod
    def validate_secret_strength(cls, value: SecretStr) -> SecretStr:
        """Reject empty or short signing secrets."""
        if len(value.get_secret_value().strip()) < _MIN_SECRET_LENGTH:
            raise ValueError(f"JWT secrets must be at least {_MIN_SECRET_LENGTH} characters.")
        return value

    @model_validator(mode="after")
    def validate_distinct_secrets(self) -> JWTSettings:
        """Access and refresh tokens must not share a signing secret."""
        if self.access_secret.get_secret_value() == self.refresh_secret.get_secret_value():
            raise ValueError("jwt.access_secret and jwt.refresh_secret must differ.")
        return self


class RateLimitSettings(BaseModel):
    """Rate limiting thresholds."""

    backend: Literal["memory", "redis"] = "memory"
    global_max_requests: int = Field(default=300, ge=1)
    global_window_seconds: int = Field(default=60, ge=1)
    auth_max_requests: int = Field(default=10, ge=1)
    auth_window_seconds: int = Field(default=900, ge=1)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)
    max_window_seconds: int = Field(default=900, ge=1)

    @model_validator(mode="after")
    def validate_sweep_horizon(self) -> RateLimitSettings:
        """The sweeper must never prune hits that a limiter window still counts."""
        if max(self.global_window_seconds, self.auth_window_seconds) > self.max_window_seconds:
            raise ValueError(
                "rate_limit.max_window_seconds must cover global and auth window lengths."
            )
        return self


class ImpersonationSettings(BaseModel):
    """Bounds for administrator impersonation windows."""

    min_minutes: int = Field(default=15, ge=1)
    max_minutes: int = Field(default=240, ge=1)
    default_minutes: int = Field(default=60, ge=1)

    @model_validator(mode="after")
    def validate_bounds(self) -> ImpersonationSettings:
        """Default duration must sit inside the allowed range."""
        if not self.min_minutes <= self.default_minutes <= self.max_minutes:
            raise ValueError("impersonation.default_minutes must be within min/max bounds.")
        if self.max_minutes * 60 >= REFRESH_TOKEN_TTL_SECONDS:
            raise ValueError("impersonation.max_minutes must be shorter than a session lifetime.")
        return self


class Settings(BaseSettings):
    """Root application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=AppSettings)
    database: DatabaseSettings
    redis: RedisSettings = Field(default_factory=RedisSettings)
    jwt: JWTSettings
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    impersonation: ImpersonationSettings = Field(default_factory=ImpersonationSettings)


def _standard_log_fields(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Inject required structured logging fields."""
    context_vars = structlog.contextvars.get_contextvars()
    event_dict.setdefault("correlation_id", str(context_vars.get("correlation_id", "unknown")))
    event_dict.setdefault("environment", _LOG_CONTEXT["environment"])
    event_dict.setdefault("service", _LOG_CONTEXT["service"])
    event_dict.setdefault("timestamp", datetime.now(UTC).isoformat())
    return event_dict


def configure_structlog(settings: Settings) -> None:
    """Configure structlog for JSON output with required fields."""
    _LOG_CONTEXT["environment"] = settings.app.environment
    _LOG_CONTEXT["service"] = settings.app.service

    log_level = getattr(logging, settings.app.log_level, logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _standard_log_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@lru_cache
def get_settings() -> Settings:
    """Load and cache application settings from environment variables."""
    return Settings()
