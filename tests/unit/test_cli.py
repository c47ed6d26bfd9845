"""Unit tests for operational CLI commands against a temporary SQLite database."""

from __future__ import annotations

import json

import pytest

from iam_core import cli
from iam_core.config import get_settings


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE__URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("JWT__ACCESS_SECRET", "cli-access-secret-0123456789abcdefghijkl")
    monkeypatch.setenv("JWT__REFRESH_SECRET", "cli-refresh-secret-0123456789abcdefghijk")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _last_json_line(capsys) -> dict:
    lines = [line for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    return json.loads(lines[-1])


def test_create_schema_then_user_then_revoke(cli_env, capsys) -> None:
    assert cli.main(["create-schema"]) == 0
    assert _last_json_line(capsys) == {"status": "created"}

    exit_code = cli.main(
        [
            "create-user",
            "--email",
            "Ops@Example.com",
            "--password",
            "Password123!",
            "--role",
            "mentor",
            "--role",
            "facilitator",
        ]
    )
    created = _last_json_line(capsys)

    assert exit_code == 0
    assert created["email"] == "ops@example.com"
    assert created["roles"] == ["mentor", "facilitator"]

    assert cli.main(["revoke-sessions", "--user-id", created["user_id"]]) == 0
    assert _last_json_line(capsys) == {"user_id": created["user_id"], "revoked_count": 0}


def test_unknown_role_is_rejected_by_parser(cli_env) -> None:
    with pytest.raises(SystemExit):
        cli.main(["create-user", "--email", "x@example.com", "--password", "p", "--role", "root"])
