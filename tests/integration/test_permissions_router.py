"""Integration tests for per-tenant navigation overrides."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from iam_core.container import ServiceContainer
from iam_core.models.audit_event import AuditEvent

LEARNER_DEFAULTS = ["dashboard", "programs", "assessments", "notifications", "help", "settings"]


def _bearer(access_token: str) -> dict[str, str]:
    return {"authorization": f"Bearer {access_token}"}


@pytest.fixture
async def tenant_setup(org_factory, user_factory, login) -> dict[str, Any]:
    """Tenant admin and learner in one tenant, both logged in."""
    org = await org_factory("acme")
    await user_factory("admin@example.com", ["tenant_admin"], tenant_id=org.tenant_id)
    learner = await user_factory(
        "learner@example.com", ["learner"], tenant_id=org.tenant_id, first_name="Lara"
    )
    admin_tokens = await login("admin@example.com")
    learner_tokens = await login("learner@example.com")
    return {
        "org": org,
        "learner": learner,
        "admin": _bearer(admin_tokens["access_token"]),
        "learner_headers": _bearer(learner_tokens["access_token"]),
        "base": f"/tenants/{org.tenant_id}/permissions",
    }


@pytest.mark.asyncio
async def test_my_nav_returns_role_defaults(
    client: AsyncClient, tenant_setup: dict[str, Any]
) -> None:
    response = await client.get(
        f"{tenant_setup['base']}/my-nav", headers=tenant_setup["learner_headers"]
    )

    assert response.status_code == 200
    assert response.json() == {"nav_items": LEARNER_DEFAULTS}


@pytest.mark.asyncio
async def test_role_override_replaces_defaults_and_drops_unknown_items(
    client: AsyncClient, tenant_setup: dict[str, Any]
) -> None:
    """Tenant role overrides replace the default list; unrecognised items are ignored."""
    base = tenant_setup["base"]

    saved = await client.put(
        f"{base}/roles/learner",
        json={"nav_items": ["dashboard", "scorecard", "agency", "bogus", "dashboard"]},
        headers=tenant_setup["admin"],
    )

    assert saved.status_code == 200
    assert saved.json() == {
        "role_slug": "learner",
        "nav_items": ["dashboard", "scorecard"],
        "is_customised": True,
        "default_nav_items": LEARNER_DEFAULTS,
    }
    nav = await client.get(f"{base}/my-nav", headers=tenant_setup["learner_headers"])
    assert nav.json()["nav_items"] == ["dashboard", "scorecard"]

    overwritten = await client.put(
        f"{base}/roles/learner", json={"nav_items": ["help"]}, headers=tenant_setup["admin"]
    )
    assert overwritten.json()["nav_items"] == ["help"]

    listing = await client.get(f"{base}/roles", headers=tenant_setup["admin"])
    roles = {row["role_slug"]: row for row in listing.json()}
    assert list(roles) == ["learner", "mentor", "facilitator", "tenant_admin"]
    assert roles["learner"]["is_customised"] is True
    assert roles["mentor"]["is_customised"] is False


@pytest.mark.asyncio
async def test_reset_role_override_restores_defaults(
    client: AsyncClient, tenant_setup: dict[str, Any]
) -> None:
    base = tenant_setup["base"]
    await client.put(
        f"{base}/roles/learner", json={"nav_items": ["help"]}, headers=tenant_setup["admin"]
    )

    reset = await client.delete(f"{base}/roles/learner", headers=tenant_setup["admin"])

    assert reset.status_code == 200
    assert reset.json()["is_customised"] is False
    nav = await client.get(f"{base}/my-nav", headers=tenant_setup["learner_headers"])
    assert nav.json()["nav_items"] == LEARNER_DEFAULTS


@pytest.mark.asyncio
@pytest.mark.parametrize("role_slug", ["agency_admin", "agency_owner", "superuser"])
async def test_non_configurable_role_is_rejected(
    client: AsyncClient, tenant_setup: dict[str, Any], role_slug: str
) -> None:
    response = await client.put(
        f"{tenant_setup['base']}/roles/{role_slug}",
        json={"nav_items": ["dashboard"]},
        headers=tenant_setup["admin"],
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"


@pytest.mark.asyncio
async def test_user_override_layers_grants_and_revocations(
    client: AsyncClient, tenant_setup: dict[str, Any]
) -> None:
    """Grants are appended after the role list and revocations always win."""
    base = tenant_setup["base"]
    learner_id = tenant_setup["learner"].id
    await client.put(
        f"{base}/roles/learner",
        json={"nav_items": ["dashboard", "programs", "help"]},
        headers=tenant_setup["admin"],
    )

    saved = await client.put(
        f"{base}/users/{learner_id}",
        json={
            "granted_nav_items": ["analytics", "help", "unknown"],
            "revoked_nav_items": ["programs", "analytics"],
        },
        headers=tenant_setup["admin"],
    )

    assert saved.status_code == 200
    body = saved.json()
    assert body["granted_nav_items"] == ["analytics", "help"]
    assert body["revoked_nav_items"] == ["programs", "analytics"]
    nav = await client.get(f"{base}/my-nav", headers=tenant_setup["learner_headers"])
    assert nav.json()["nav_items"] == ["dashboard", "help"]

    fetched = await client.get(f"{base}/users/{learner_id}", headers=tenant_setup["admin"])
    assert fetched.json()["user_id"] == str(learner_id)

    listing = await client.get(f"{base}/users", headers=tenant_setup["admin"])
    assert [row["email"] for row in listing.json()] == ["learner@example.com"]
    assert listing.json()[0]["first_name"] == "Lara"


@pytest.mark.asyncio
async def test_user_override_requires_member_of_tenant(
    client: AsyncClient, tenant_setup: dict[str, Any], org_factory, user_factory
) -> None:
    """Overrides can only target live users of the tenant in the path."""
    other = await org_factory("globex")
    outsider = await user_factory("outsider@example.com", ["learner"], tenant_id=other.tenant_id)
    base = tenant_setup["base"]
    body = {"granted_nav_items": ["analytics"]}
    headers = tenant_setup["admin"]

    foreign = await client.put(f"{base}/users/{outsider.id}", json=body, headers=headers)
    unknown = await client.put(f"{base}/users/{uuid4()}", json=body, headers=headers)

    assert foreign.status_code == 404
    assert unknown.status_code == 404
    assert foreign.json()["code"] == "not_found"
    listing = await client.get(f"{base}/users", headers=headers)
    assert listing.json() == []


@pytest.mark.asyncio
async def test_clear_user_override(client: AsyncClient, tenant_setup: dict[str, Any]) -> None:
    base = tenant_setup["base"]
    learner_id = tenant_setup["learner"].id
    await client.put(
        f"{base}/users/{learner_id}",
        json={"revoked_nav_items": ["help"]},
        headers=tenant_setup["admin"],
    )

    cleared = await client.delete(f"{base}/users/{learner_id}", headers=tenant_setup["admin"])

    assert cleared.json() == {"success": True}
    fetched = await client.get(f"{base}/users/{learner_id}", headers=tenant_setup["admin"])
    assert fetched.status_code == 200
    assert fetched.json() is None
    nav = await client.get(f"{base}/my-nav", headers=tenant_setup["learner_headers"])
    assert nav.json()["nav_items"] == LEARNER_DEFAULTS


@pytest.mark.asyncio
async def test_override_changes_are_audited(
    client: AsyncClient, container: ServiceContainer, tenant_setup: dict[str, Any]
) -> None:
    base = tenant_setup["base"]
    await client.put(
        f"{base}/roles/mentor", json={"nav_items": ["dashboard"]}, headers=tenant_setup["admin"]
    )
    await client.delete(f"{base}/roles/mentor", headers=tenant_setup["admin"])

    async with container.session_factory() as db:
        events = (
            await db.execute(select(AuditEvent).where(AuditEvent.event_type.like("permissions.%")))
        ).scalars().all()

    by_type = {event.event_type: event for event in events}
    assert set(by_type) == {"permissions.role_override.updated", "permissions.role_override.reset"}
    updated = by_type["permissions.role_override.updated"]
    assert updated.event_metadata["role_slug"] == "mentor"
    assert updated.event_metadata["tenant_id"] == str(tenant_setup["org"].tenant_id)
    assert updated.impersonator_id is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("GET", "/roles"),
        ("PUT", "/roles/learner"),
        ("DELETE", "/roles/learner"),
        ("GET", "/users"),
    ],
)
async def test_management_requires_tenant_admin_level(
    client: AsyncClient, tenant_setup: dict[str, Any], method: str, path: str
) -> None:
    response = await client.request(
        method,
        f"{tenant_setup['base']}{path}",
        json={"nav_items": []} if method == "PUT" else None,
        headers=tenant_setup["learner_headers"],
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_tenant_user_cannot_reach_another_tenant(
    client: AsyncClient, tenant_setup: dict[str, Any], org_factory
) -> None:
    other = await org_factory("globex")

    response = await client.get(
        f"/tenants/{other.tenant_id}/permissions/my-nav", headers=tenant_setup["admin"]
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_agency_user_sees_only_own_tenants(
    client: AsyncClient, org_factory, user_factory, login
) -> None:
    """Agency identities manage owned tenants; other tenants look nonexistent."""
    acme = await org_factory("acme")
    globex = await org_factory("globex")
    await user_factory("agency@example.com", ["agency_admin"], agency_id=acme.agency_id)
    headers = _bearer((await login("agency@example.com"))["access_token"])

    own = await client.get(f"/tenants/{acme.tenant_id}/permissions/roles", headers=headers)
    foreign = await client.get(f"/tenants/{globex.tenant_id}/permissions/roles", headers=headers)
    malformed = await client.get("/tenants/not-a-uuid/permissions/my-nav", headers=headers)

    assert own.status_code == 200
    assert foreign.status_code == 404
    assert malformed.status_code == 404


@pytest.mark.asyncio
async def test_agency_user_navigation_ignores_tenant_overrides(
    client: AsyncClient, org_factory, user_factory, login
) -> None:
    org = await org_factory("acme")
    await user_factory("agency@example.com", ["agency_admin"], agency_id=org.agency_id)
    headers = _bearer((await login("agency@example.com"))["access_token"])

    nav = await client.get(f"/tenants/{org.tenant_id}/permissions/my-nav", headers=headers)

    assert nav.status_code == 200
    assert "agency" in nav.json()["nav_items"]
    assert "program-builder" in nav.json()["nav_items"]
