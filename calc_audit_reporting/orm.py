"""
Reporting ORM Persistence Models (``calc_audit_reporting.orm``).

Responsibility:
    SQLAlchemy model persisting generated summary reports.  Each generation
    inserts a new row; rows are never overwritten, so report history for a
    period is preserved for "as of" comparisons.

Architecture position:
    **Reporting layer** -- persistence companion to the DTOs in
    ``calc_audit_reporting.models``.  Inherits the kernel declarative Base.

Invariants enforced:
    - Only the export metadata columns (``EXPORT_COLUMNS``) may change after
      insert; the kernel immutability listeners block everything else.
    - Amounts are Decimal (Numeric(38,9)), never float.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Index, Numeric, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from calc_audit_kernel.db.base import Base
from calc_audit_kernel.db.immutability import changed_columns
from calc_audit_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from calc_audit_reporting.models import SummaryReportView

EXPORT_COLUMNS: frozenset[str] = frozenset({
    "exported_at",
    "export_format",
    "export_path",
    "export_file_name",
})


class SummaryReportModel(Base):
    """
    ORM model for one generated summary report.

    Guarantees:
        - ``breakdown_by_type`` maps calculation type to ``{"count", "amount"}``
          with amounts as plain decimal strings.
        - ``summary_data`` carries the derived metrics (rates as strings).
    """

    __tablename__ = "calculation_summary_reports"

    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    report_type: Mapped[str] = mapped_column(String(50), nullable=False)
    report_period: Mapped[str] = mapped_column(String(7), nullable=False)
    calculation_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    period_start: Mapped[datetime] = mapped_column(nullable=False)
    period_end: Mapped[datetime] = mapped_column(nullable=False)
    total_calculations: Mapped[int] = mapped_column(nullable=False)
    total_tax_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    breakdown_by_type: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    summary_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    record_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    generated_by: Mapped[str] = mapped_column(String(64), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(nullable=False)
    exported_at: Mapped[datetime | None] = mapped_column(nullable=True)
    export_format: Mapped[str | None] = mapped_column(String(10), nullable=True)
    export_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    export_file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index(
            "idx_summary_reports_company_period",
            "company_id", "report_period", "generated_at",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<SummaryReport {self.id} {self.company_id} "
            f"{self.report_type}/{self.report_period}>"
        )

    def to_dto(self) -> SummaryReportView:
        from calc_audit_reporting.models import SummaryReportView

        return SummaryReportView.from_model(self)


# =============================================================================
# ORM-Level Immutability (only export metadata may change)
# =============================================================================


@event.listens_for(SummaryReportModel, "before_update")
def prevent_report_update(mapper, connection, target):
    """Block changes to a generated report other than its export metadata."""
    frozen = changed_columns(target) - EXPORT_COLUMNS
    if frozen:
        raise ImmutabilityViolationError(
            entity_type="SummaryReport",
            entity_id=str(target.id),
            reason=f"Summary reports are immutable; attempted to modify {sorted(frozen)}",
        )


@event.listens_for(SummaryReportModel, "before_delete")
def prevent_report_delete(mapper, connection, target):
    """Prevent deletion of summary reports."""
    raise ImmutabilityViolationError(
        entity_type="SummaryReport",
        entity_id=str(target.id),
        reason="Summary reports are append-only -- cannot delete",
    )
