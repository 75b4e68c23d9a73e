"""
Reporting ORM Registry (``calc_audit_reporting._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy model -- kernel and reporting -- is imported so
that ``Base.metadata`` holds the complete schema, and provide
``create_all_tables()``, the one entry point scripts and
``tests/conftest.py`` use to build it.

Architecture position
---------------------
**Reporting layer** -- utility.  Imports from ``calc_audit_kernel``
(allowed: outer -> kernel).  MUST NOT be imported by ``calc_audit_kernel``.
"""

from sqlalchemy.engine import Engine


def import_all_orm_models() -> None:
    """Import kernel models, then reporting models.  Idempotent."""
    import calc_audit_kernel.models  # noqa: F401
    import calc_audit_reporting.orm  # noqa: F401


def create_all_tables(engine: Engine | None = None) -> None:
    """Register every ORM model and create all tables."""
    from calc_audit_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables(engine)

