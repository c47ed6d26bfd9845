"""Unit tests for DB-backed audit service behavior."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from uuid import uuid4

from iam_core.services import audit_service as audit_module
from iam_core.services.audit_service import AuditService


class _RequestStub:
    """Minimal request-like object used by audit service unit tests."""

    def __init__(
        self,
        headers: dict[str, str] | None = None,
        correlation_id: str | None = None,
    ) -> None:
        self.headers = headers or {}
        self.state = SimpleNamespace(correlation_id=correlation_id)


class _SessionStub:
    """AsyncSession-like stub capturing persisted audit events."""

    def __init__(self, fail_commit: bool = False) -> None:
        self.fail_commit = fail_commit
        self.added: list[Any] = []
        self.commit_calls = 0

    async def __aenter__(self) -> _SessionStub:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    def add(self, value: Any) -> None:
        """Capture ORM object added by the service."""
        self.added.append(value)

    async def commit(self) -> None:
        """Commit or raise configured failure."""
        self.commit_calls += 1
        if self.fail_commit:
            raise RuntimeError("db down")


class _CaptureLogger:
    """Structlog-like sink for error assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def error(self, event: str, **kwargs: Any) -> None:
        """Capture error event payload."""
        self.calls.append((event, kwargs))


async def test_record_persists_event_and_redacts_sensitive_metadata() -> None:
    """record() stores one audit row with redacted metadata and parsed request fields."""
    session = _SessionStub()
    service = AuditService(lambda: session)  # type: ignore[arg-type]
    admin_id = uuid4()
    target_id = uuid4()
    impersonation_id = uuid4()
    request = _RequestStub(
        headers={"user-agent": "pytest-agent/1.0", "x-forwarded-for": "203.0.113.5, 10.0.0.1"},
        correlation_id="cid-123",
    )

    await service.record(
        event_type="impersonation.started",
        actor_type="admin",
        success=True,
        request=request,  # type: ignore[arg-type]
        actor_id=str(admin_id),
        target_id=target_id,
        target_type="user",
        metadata={
            "impersonation_id": impersonation_id,
            "email": "alice@example.com",
            "refresh_token": "secret-token",
            "nested": {"contact": "ops@example.com", "ok": "value"},
        },
    )

    assert session.commit_calls == 1
    assert len(session.added) == 1
    event = session.added[0]
    assert event.event_type == "impersonation.started"
    assert event.actor_type.value == "admin"
    assert event.actor_id == admin_id
    assert event.impersonator_id is None
    assert event.target_id == target_id
    assert event.target_type == "user"
    assert event.ip_address == "203.0.113.5"
    assert event.user_agent == "pytest-agent/1.0"
    assert event.success is True
    assert event.correlation_id is not None
    assert event.event_metadata["impersonation_id"] == str(impersonation_id)
    assert event.event_metadata["email"] == "***REDACTED***"
    assert event.event_metadata["refresh_token"] == "***REDACTED***"
    assert event.event_metadata["nested"]["contact"] == "***REDACTED***"
    assert event.event_metadata["nested"]["ok"] == "value"


async def test_record_keeps_impersonator_on_writes_made_while_impersonating() -> None:
    session = _SessionStub()
    service = AuditService(lambda: session)  # type: ignore[arg-type]
    target_id, admin_id = uuid4(), uuid4()

    await service.record(
        event_type="permissions.user_override.updated",
        actor_type="user",
        success=True,
        actor_id=target_id,
        impersonator_id=admin_id,
    )

    event = session.added[0]
    assert event.actor_id == target_id
    assert event.impersonator_id == admin_id
    assert event.ip_address is None
    assert event.correlation_id is None


async def test_record_logs_and_swallows_write_failures(monkeypatch) -> None:
    """record() never raises to callers when audit persistence fails."""
    capture = _CaptureLogger()
    monkeypatch.setattr(audit_module, "logger", capture)

    session = _SessionStub(fail_commit=True)
    service = AuditService(lambda: session)  # type: ignore[arg-type]

    await service.record(
        event_type="user.login.failure",
        actor_type="invalid-actor",
        success=False,
        request=_RequestStub(headers={"user-agent": "pytest-agent/1.0"}),  # type: ignore[arg-type]
        failure_reason="invalid_credentials",
    )

    assert session.commit_calls == 1
    assert len(capture.calls) == 1
    event_name, payload = capture.calls[0]
    assert event_name == "audit_write_failed"
    assert payload["event_type"] == "user.login.failure"
    assert payload["actor_type"] == "system"
    assert payload["success"] is False


async def test_unparseable_ids_are_dropped() -> None:
    session = _SessionStub()
    service = AuditService(lambda: session)  # type: ignore[arg-type]

    await service.record(
        event_type="session.revoked",
        actor_type="user",
        success=True,
        actor_id="not-a-uuid",
        target_id="",
    )

    event = session.added[0]
    assert event.actor_id is None
    assert event.target_id is None
