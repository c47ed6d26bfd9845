"""Database package exports."""

from iam_core.db.base import Base, UTCDateTime
from iam_core.db.session import build_engine, build_session_factory, create_schema

__all__ = [
    "Base",
    "UTCDateTime",
    "build_engine",
    "build_session_factory",
    "create_schema",
]
