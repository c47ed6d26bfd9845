"""Unit tests for fail-closed store lookups used by authentication dependencies."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from iam_core.dependencies import fail_closed
from iam_core.errors import Unauthenticated


@pytest.mark.asyncio
async def test_lookup_past_deadline_is_unauthenticated() -> None:
    with pytest.raises(Unauthenticated):
        async with fail_closed(0.01, "session_check"):
            await asyncio.sleep(1)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        OperationalError("SELECT 1", {}, ConnectionRefusedError("database down")),
        ConnectionResetError("redis connection reset"),
    ],
)
async def test_store_errors_are_unauthenticated(error: Exception) -> None:
    with pytest.raises(Unauthenticated) as raised:
        async with fail_closed(1.0, "session_check"):
            raise error

    assert raised.value.__cause__ is error


@pytest.mark.asyncio
async def test_unrelated_errors_propagate_unchanged() -> None:
    """Only store failures are mapped; programming errors still surface."""
    with pytest.raises(KeyError):
        async with fail_closed(1.0, "session_check"):
            raise KeyError("missing")


@pytest.mark.asyncio
async def test_completed_lookup_passes_through() -> None:
    async with fail_closed(1.0, "session_check"):
        result = await asyncio.sleep(0, result=True)

    assert result is True
