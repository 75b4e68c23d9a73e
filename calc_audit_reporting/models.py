"""
Reporting Domain Models (``calc_audit_reporting.models``).

Responsibility
--------------
Frozen dataclass value objects for generated summary reports, audit
statistics and export artifacts, plus the ``ExportFormat`` enum.

Architecture position
---------------------
**Reporting layer** -- pure data definitions.  Returned by
``ReportingService`` and ``ExportService``; the only ORM touch point is
``SummaryReportView.from_model``.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields and rates use ``Decimal`` -- NEVER ``float``.
* JSON blobs are deep-copied out of the ORM row.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from calc_audit_kernel.db.types import to_decimal
from calc_audit_kernel.exceptions import UnsupportedFormatError

if TYPE_CHECKING:
    from calc_audit_reporting.orm import SummaryReportModel


# =========================================================================
# Enums
# =========================================================================


class ExportFormat(str, Enum):
    """Supported export formats."""

    JSON = "JSON"
    CSV = "CSV"
    XLSX = "XLSX"

    @property
    def extension(self) -> str:
        return self.value.lower()

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self]

    @classmethod
    def parse(cls, value: ExportFormat | str) -> ExportFormat:
        """
        Resolve a caller-supplied format name, case-insensitively.

        ``excel`` is accepted as an alias for XLSX.

        Raises:
            UnsupportedFormatError: for anything else.
        """
        if isinstance(value, ExportFormat):
            return value
        key = str(value).strip().lower()
        try:
            return _ALIASES[key]
        except KeyError:
            raise UnsupportedFormatError(
                str(value), supported=tuple(sorted(_ALIASES)),
            ) from None


_ALIASES: dict[str, ExportFormat] = {
    "json": ExportFormat.JSON,
    "csv": ExportFormat.CSV,
    "xlsx": ExportFormat.XLSX,
    "excel": ExportFormat.XLSX,
}

_CONTENT_TYPES: dict[ExportFormat, str] = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
    ExportFormat.XLSX: (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    ),
}


# =========================================================================
# Aggregation results
# =========================================================================


@dataclass(frozen=True)
class TypeBreakdown:
    """Count and summed amount for one calculation type."""

    calculation_type: str
    count: int
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "amount": format(self.amount, "f")}


@dataclass(frozen=True)
class RecordSummary:
    """Pure aggregate over a set of calculation records."""

    total_calculations: int
    total_tax_amount: Decimal
    compliant_count: int
    breakdown_by_type: tuple[TypeBreakdown, ...]
    totals_by_currency: tuple[tuple[str, Decimal], ...]
    average_amount: Decimal

    @property
    def calculation_types(self) -> tuple[str, ...]:
        return tuple(b.calculation_type for b in self.breakdown_by_type)


# =========================================================================
# Summary Report
# =========================================================================


@dataclass(frozen=True)
class SummaryReportView:
    """A persisted summary report."""

    id: UUID
    company_id: str
    report_type: str
    report_period: str
    calculation_type: str | None
    period_start: datetime
    period_end: datetime
    total_calculations: int
    total_tax_amount: Decimal
    breakdown_by_type: dict[str, Any]
    summary_data: dict[str, Any]
    record_ids: tuple[UUID, ...]
    generated_by: str
    generated_at: datetime
    exported_at: datetime | None = None
    export_format: str | None = None
    export_path: str | None = None
    export_file_name: str | None = None

    @property
    def compliance_rate(self) -> Decimal:
        return to_decimal(self.summary_data["complianceRate"])

    @property
    def amendment_rate(self) -> Decimal:
        return to_decimal(self.summary_data["amendmentRate"])

    @property
    def is_exported(self) -> bool:
        return self.exported_at is not None

    @classmethod
    def from_model(cls, model: SummaryReportModel) -> SummaryReportView:
        return cls(
            id=model.id,
            company_id=model.company_id,
            report_type=model.report_type,
            report_period=model.report_period,
            calculation_type=model.calculation_type,
            period_start=model.period_start,
            period_end=model.period_end,
            total_calculations=model.total_calculations,
            total_tax_amount=to_decimal(model.total_tax_amount),
            breakdown_by_type=copy.deepcopy(model.breakdown_by_type),
            summary_data=copy.deepcopy(model.summary_data),
            record_ids=tuple(UUID(rid) for rid in model.record_ids),
            generated_by=model.generated_by,
            generated_at=model.generated_at,
            exported_at=model.exported_at,
            export_format=model.export_format,
            export_path=model.export_path,
            export_file_name=model.export_file_name,
        )


@dataclass(frozen=True)
class AuditStatistics:
    """Company-wide audit dashboard figures."""

    company_id: str
    total_calculations: int
    calculations_this_month: int
    amendment_rate: Decimal
    compliance_rate: Decimal
    pending_validations: int


# =========================================================================
# Export
# =========================================================================


@dataclass(frozen=True)
class ExportArtifact:
    """A stored export file.  ``location`` is opaque to callers."""

    location: str
    file_name: str
    content_type: str
    size_bytes: int
