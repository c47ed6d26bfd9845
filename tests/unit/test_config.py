"""Unit tests for settings validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from iam_core.config import ImpersonationSettings, JWTSettings, RateLimitSettings, Settings
from iam_core.container import build_container

ACCESS_SECRET = "a" * 40
REFRESH_SECRET = "r" * 40


def test_settings_load_from_nested_environment(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE__URL", "sqlite+aiosqlite:///./iam.db")
    monkeypatch.setenv("JWT__ACCESS_SECRET", ACCESS_SECRET)
    monkeypatch.setenv("JWT__REFRESH_SECRET", REFRESH_SECRET)
    monkeypatch.setenv("RATE_LIMIT__AUTH_MAX_REQUESTS", "3")
    monkeypatch.setenv("IMPERSONATION__DEFAULT_MINUTES", "30")

    settings = Settings()

    assert settings.database.url == "sqlite+aiosqlite:///./iam.db"
    assert settings.jwt.access_secret.get_secret_value() == ACCESS_SECRET
    assert settings.rate_limit.auth_max_requests == 3
    assert settings.rate_limit.backend == "memory"
    assert settings.impersonation.default_minutes == 30
    assert settings.redis.url is None


def test_secrets_are_masked_in_repr() -> None:
    jwt_settings = JWTSettings(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)

    assert ACCESS_SECRET not in repr(jwt_settings)


def test_short_secret_is_rejected() -> None:
    with pytest.raises(ValidationError):
        JWTSettings(access_secret="too-short", refresh_secret=REFRESH_SECRET)


def test_shared_secret_is_rejected() -> None:
    with pytest.raises(ValidationError):
        JWTSettings(access_secret=ACCESS_SECRET, refresh_secret=ACCESS_SECRET)


def test_sync_database_driver_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(
            database={"url": "postgresql://localhost/iam"},
            jwt={"access_secret": ACCESS_SECRET, "refresh_secret": REFRESH_SECRET},
        )


def test_impersonation_default_must_be_within_bounds() -> None:
    with pytest.raises(ValidationError):
        ImpersonationSettings(min_minutes=15, max_minutes=240, default_minutes=300)

    bounds = ImpersonationSettings()
    assert (bounds.min_minutes, bounds.default_minutes, bounds.max_minutes) == (15, 60, 240)


def test_impersonation_window_must_be_shorter_than_a_session() -> None:
    with pytest.raises(ValidationError):
        ImpersonationSettings(max_minutes=7 * 24 * 60)

    assert ImpersonationSettings(max_minutes=7 * 24 * 60 - 1).max_minutes == 10079


@pytest.mark.parametrize(
    "windows",
    [
        {"auth_window_seconds": 1800, "max_window_seconds": 900},
        {"global_window_seconds": 120, "auth_window_seconds": 60, "max_window_seconds": 90},
    ],
)
def test_limiter_windows_must_fit_sweep_horizon(windows: dict[str, int]) -> None:
    with pytest.raises(ValidationError):
        RateLimitSettings(**windows)


def test_token_lifetimes_ignore_configuration_input() -> None:
    """Access and refresh lifetimes stay 15 minutes and 7 days whatever the settings carry."""
    settings = Settings(
        database={"url": "sqlite+aiosqlite:///:memory:"},
        jwt={
            "access_secret": ACCESS_SECRET,
            "refresh_secret": REFRESH_SECRET,
            "access_token_ttl_seconds": 86400,
            "refresh_token_ttl_seconds": 60,
        },
    )

    container = build_container(settings)

    assert not hasattr(settings.jwt, "access_token_ttl_seconds")
    assert container.token_service.access_ttl_seconds == 900
    assert container.token_service.refresh_ttl_seconds == 604800
