"""CLI entrypoints for operational tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence
from uuid import UUID

from iam_core.config import Settings, configure_structlog, get_settings
from iam_core.core.roles import SYSTEM_ROLES
from iam_core.core.sessions import REVOKED_BY_ADMIN, SessionManager
from iam_core.db.session import build_engine, build_session_factory, create_schema
from iam_core.services.user_service import UserService


async def _run_create_schema(settings: Settings) -> int:
    """Create all tables directly from ORM metadata (local and test databases)."""
    engine = build_engine(settings)
    try:
        await create_schema(engine)
    finally:
        await engine.dispose()
    print(json.dumps({"status": "created"}))
    return 0


async def _run_create_user(
    settings: Settings,
    email: str,
    password: str,
    roles: list[str],
    tenant_id: UUID | None,
    agency_id: UUID | None,
    first_name: str,
    last_name: str,
) -> int:
    """Create a user with password credentials and role assignments."""
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    try:
        async with session_factory() as db_session:
            user = await UserService().create_user(
                db_session,
                email=email,
                password=password,
                role_slugs=roles,
                first_name=first_name,
                last_name=last_name,
                tenant_id=tenant_id,
                agency_id=agency_id,
            )
    finally:
        await engine.dispose()
    print(json.dumps({"user_id": str(user.id), "email": user.email, "roles": roles}))
    return 0


async def _run_revoke_sessions(settings: Settings, user_id: UUID) -> int:
    """Revoke every live session of a user."""
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    try:
        async with session_factory() as db_session:
            revoked = await SessionManager().revoke_all_user_sessions(
                db_session, user_id, reason=REVOKED_BY_ADMIN
            )
    finally:
        await engine.dispose()
    print(json.dumps({"user_id": str(user_id), "revoked_count": revoked}))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for supported operational commands."""
    parser = argparse.ArgumentParser(prog="python -m iam_core.cli")
    subcommands = parser.add_subparsers(dest="command", required=True)

    subcommands.add_parser("create-schema")

    create_user = subcommands.add_parser("create-user")
    create_user.add_argument("--email", required=True)
    create_user.add_argument("--password", required=True)
    create_user.add_argument(
        "--role",
        dest="roles",
        action="append",
        choices=sorted(SYSTEM_ROLES),
        required=True,
        help="Role slug; repeat to assign several roles in order.",
    )
    create_user.add_argument("--tenant-id", type=UUID, default=None)
    create_user.add_argument("--agency-id", type=UUID, default=None)
    create_user.add_argument("--first-name", default="")
    create_user.add_argument("--last-name", default="")

    revoke = subcommands.add_parser("revoke-sessions")
    revoke.add_argument("--user-id", type=UUID, required=True)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_structlog(settings)
    if args.command == "create-schema":
        return asyncio.run(_run_create_schema(settings))
    if args.command == "create-user":
        return asyncio.run(
            _run_create_user(
                settings,
                email=args.email,
                password=args.password,
                roles=args.roles,
                tenant_id=args.tenant_id,
                agency_id=args.agency_id,
                first_name=args.first_name,
                last_name=args.last_name,
            )
        )
    if args.command == "revoke-sessions":
        return asyncio.run(_run_revoke_sessions(settings, user_id=args.user_id))
    parser.error("Unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
