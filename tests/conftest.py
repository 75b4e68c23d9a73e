"""
Pytest fixtures for the calculation audit test suite.

Provides:
- A fresh in-memory SQLite database per test (all tables, listeners on)
- A file-backed SQLite database for multi-threaded race tests
- Deterministic clock and shared version issuer
- Store, amendment, reporting and export services wired together
- Calculation payload builders and structured log capture
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from calc_audit_kernel.db.engine import build_engine
from calc_audit_kernel.db.immutability import register_immutability_listeners
from calc_audit_kernel.domain.clock import DeterministicClock
from calc_audit_kernel.domain.dtos import CalculationRecordView
from calc_audit_kernel.domain.values import CalculationStatus, CalculationType
from calc_audit_kernel.domain.versioning import VersionIssuer
from calc_audit_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from calc_audit_kernel.services.amendment_service import AmendmentService
from calc_audit_kernel.services.calculation_store import CalculationStore
from calc_audit_reporting._orm_registry import create_all_tables
from calc_audit_reporting.config import ExportConfig
from calc_audit_reporting.export_service import ExportService
from calc_audit_reporting.service import ReportingService

TEST_COMPANY_ID = "company-001"
TEST_USER_ID = "user-042"
TEST_REVIEWER_ID = "reviewer-007"

FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture calc_audit logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, store):
            store.record_calculation(...)
            logs = captured_logs()
            assert any(r["message"] == "calculation_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("calc_audit")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


def _make_engine(url: str):
    engine = build_engine(url)
    create_all_tables(engine)
    register_immutability_listeners()
    return engine


@pytest.fixture
def engine():
    """Fresh in-memory database with every table and the immutability listeners."""
    eng = _make_engine("sqlite://")
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """A bare session for direct model access in audit tests."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed database; each thread gets its own connection."""
    eng = _make_engine(f"sqlite:///{tmp_path / 'calc_audit_race.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return sessionmaker(bind=file_engine, expire_on_commit=False)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def version_issuer(deterministic_clock) -> VersionIssuer:
    return VersionIssuer(deterministic_clock)


@pytest.fixture
def store(session_factory, deterministic_clock, version_issuer) -> CalculationStore:
    return CalculationStore(
        session_factory,
        clock=deterministic_clock,
        version_issuer=version_issuer,
    )


@pytest.fixture
def amendment_service(store) -> AmendmentService:
    return AmendmentService(store)


@pytest.fixture
def reporting_service(session_factory, deterministic_clock) -> ReportingService:
    return ReportingService(session_factory, clock=deterministic_clock)


@pytest.fixture
def export_config(tmp_path) -> ExportConfig:
    return ExportConfig(export_root=tmp_path / "exports")


@pytest.fixture
def export_service(session_factory, export_config, deterministic_clock) -> ExportService:
    return ExportService(session_factory, config=export_config, clock=deterministic_clock)


# =============================================================================
# Payload builders
# =============================================================================


def make_steps(total: Decimal | str, currency: str = "AED") -> list[dict[str, Any]]:
    """Two-step VAT-style derivation ending at ``total``."""
    total = Decimal(str(total))
    base = total * 20
    return [
        {
            "stepNumber": 1,
            "description": "Taxable supplies",
            "formula": "sum(standard_rated_sales)",
            "inputs": {"standardRatedSales": str(base)},
            "calculation": f"{base}",
            "result": str(base),
            "currency": currency,
        },
        {
            "stepNumber": 2,
            "description": "Output VAT at 5%",
            "formula": "taxable_supplies * 0.05",
            "inputs": {"rate": "0.05"},
            "calculation": f"{base} * 0.05",
            "result": str(total),
            "currency": currency,
            "regulatoryReference": "Federal Decree-Law No. 8 of 2017, Art. 3",
        },
    ]


def make_result(
    total: Decimal | str | int = "1000",
    currency: str = "AED",
    compliant: bool = True,
    method: str = "standard",
    steps: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Calculator payload in the camelCase shape calculators hand over."""
    return {
        "totalAmount": str(total),
        "currency": currency,
        "method": method,
        "breakdown": steps if steps is not None else make_steps(total, currency),
        "regulatoryCompliance": {
            "compliance": compliant,
            "reference": "FTA-VAT-2017",
            "regulation": "UAE VAT",
        },
    }


@pytest.fixture
def result_payload():
    """Factory for calculator payloads."""
    return make_result


@pytest.fixture
def record_calculation(store):
    """
    Record a calculation with sensible defaults.

    Usage::

        recorded = record_calculation(total="1500", compliant=False)
    """

    def _record(
        total: Decimal | str | int = "1000",
        company_id: str = TEST_COMPANY_ID,
        calculation_type: str = "VAT",
        currency: str = "AED",
        compliant: bool = True,
        reference_id: str | None = "VAT-2025-01",
        input_data: dict[str, Any] | None = None,
        steps: list[dict[str, Any]] | None = None,
    ):
        return store.record_calculation(
            company_id=company_id,
            user_id=TEST_USER_ID,
            calculation_type=calculation_type,
            input_data=input_data or {"period": "2025-01", "sales": str(Decimal(str(total)) * 20)},
            result=make_result(total, currency, compliant, steps=steps),
            reference_id=reference_id,
        )

    return _record


def make_record_view(
    total: Decimal | str,
    calculation_type: str = "VAT",
    currency: str = "AED",
    compliant: bool = True,
) -> CalculationRecordView:
    """An unpersisted record view for pure aggregation tests."""
    return CalculationRecordView(
        id=uuid4(),
        company_id=TEST_COMPANY_ID,
        user_id=TEST_USER_ID,
        calculation_type=CalculationType(calculation_type),
        calculation_version="v1736942400000-00000001",
        reference_id=None,
        input_data={},
        final_result={
            "totalAmount": str(total),
            "currency": currency,
            "method": "standard",
            "compliance": {"regulation": "", "reference": "", "compliance": compliant},
        },
        method_used="standard",
        regulatory_reference=None,
        status=CalculationStatus.ACTIVE,
        validated_by=None,
        validated_at=None,
        timestamp=FIXED_NOW,
        is_amendment=False,
        amends_record_id=None,
        amendment_id=None,
        notes=None,
        result_hash="0" * 64,
    )
