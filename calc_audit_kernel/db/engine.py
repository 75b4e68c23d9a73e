"""
Module: calc_audit_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  This is the single point of database
    connection configuration for the engine.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py.  MUST NOT import from services/, selectors/ or
    domain/ (create_tables imports kernel models lazily).

Invariants enforced:
    - Every public engine operation runs inside exactly one transaction_scope():
      commit on success, rollback on any exception.  A record is never
      visible with only part of its breakdown.
    - Database-level failures surface as PersistenceError; domain errors
      (CalcAuditError subclasses) pass through unchanged after rollback.
    - PostgreSQL sessions run at READ COMMITTED with explicit row locks
      (FOR UPDATE) where stronger isolation is needed.  SQLite is supported
      for tests and single-node deployments.

Failure modes:
    - RuntimeError if get_engine/get_session_factory called before
      init_engine_from_url().
    - PersistenceError from transaction_scope() when the store rejects or
      cannot complete the write.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from calc_audit_kernel.exceptions import CalcAuditError, PersistenceError
from calc_audit_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

# Module-level engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create an Engine for the given URL without touching module state.

    PostgreSQL gets a pooled READ COMMITTED engine.  SQLite in-memory URLs
    share one connection (StaticPool) so every session sees the same
    database; file-backed SQLite gets a busy timeout so concurrent writers
    wait for each other instead of failing immediately.

    Args:
        database_url: SQLAlchemy database URL.
        echo: If True, log all SQL statements.
        pool_size: Connections kept in the pool (PostgreSQL only).
        max_overflow: Connections beyond pool_size (PostgreSQL only).
        pool_pre_ping: Test connections before use (PostgreSQL only).
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
        sqlite_busy_timeout: Seconds a SQLite writer waits for the lock.

    Returns:
        SQLAlchemy Engine instance.
    """
    if database_url.startswith("sqlite"):
        in_memory = database_url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in database_url
        if in_memory:
            engine = create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(
                database_url,
                echo=echo,
                connect_args={
                    "check_same_thread": False,
                    "timeout": sqlite_busy_timeout,
                },
                pool_timeout=pool_timeout,
            )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Postconditions: Module-level _engine and _SessionFactory are initialized.
        Immutability listeners are registered.  A second call overwrites the
        first.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    _engine = build_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
    )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    from calc_audit_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "echo": echo,
        },
    )

    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Services take the factory rather than a session so that every operation
    owns exactly one transaction and each thread gets its own session.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def transaction_scope(
    session_factory: sessionmaker[Session],
    operation: str,
) -> Generator[Session, None, None]:
    """
    Provide an all-or-nothing transactional scope for one engine operation.

    Postconditions: On normal exit, the session is committed and closed.
        On exception, the session is rolled back and closed.  Domain errors
        are re-raised unchanged; SQLAlchemy errors are re-raised as
        PersistenceError naming the operation.

    Usage:
        with transaction_scope(factory, "record_calculation") as session:
            session.add(record)
            # Commits on successful exit, rolls back on exception
    """
    session = session_factory()
    logger.debug("transaction_started", extra={"operation": operation})
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed", extra={"operation": operation})
    except CalcAuditError:
        session.rollback()
        logger.debug("transaction_rolled_back", extra={"operation": operation})
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning(
            "transaction_failed",
            extra={"operation": operation, "error": type(exc).__name__},
            exc_info=True,
        )
        raise PersistenceError(operation, str(exc)) from exc
    except Exception:
        session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"operation": operation},
            exc_info=True,
        )
        raise
    finally:
        session.close()


def _import_kernel_models() -> None:
    """Import kernel ORM modules so Base.metadata discovers their tables."""
    import calc_audit_kernel.models  # noqa: F401


def create_tables(engine: Engine | None = None) -> None:
    """
    Create every table registered on Base.metadata.

    Kernel models are always registered.  Outer packages register their own
    models first (see calc_audit_reporting._orm_registry.create_all_tables).

    Args:
        engine: Engine to create tables on; defaults to the module engine.
    """
    from calc_audit_kernel.db.base import Base

    _import_kernel_models()
    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    from calc_audit_kernel.db.base import Base

    _import_kernel_models()
    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """
    Reset the engine and session factory.

    Useful for test cleanup.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release all pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)

