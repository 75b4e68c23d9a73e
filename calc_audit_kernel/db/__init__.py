"""Database layer - engine, base classes, types, and immutability listeners."""

from calc_audit_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from calc_audit_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    transaction_scope,
)

__all__ = [
    "build_engine",
    "init_engine_from_url",
    "get_engine",
    "get_session_factory",
    "transaction_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
