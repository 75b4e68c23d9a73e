"""
Calculation Audit Reporting (``calc_audit_reporting``).

Responsibility
--------------
Summary reports over stored calculation records (totals, per-type
breakdown, compliance and amendment rates) and the export pipeline that
renders a report to JSON, CSV or XLSX.

Architecture position
---------------------
**Reporting layer** -- sits on top of ``calc_audit_kernel``.  Reads kernel
records through its selectors; writes only summary report rows.  The
kernel never imports from here.

Invariants enforced
-------------------
* Summary reports are append-only; only export metadata changes later.
* Aggregation is a pure function of the records in the period window.
"""

from calc_audit_reporting.config import ExportConfig
from calc_audit_reporting.export_service import ExportService
from calc_audit_reporting.models import (
    AuditStatistics,
    ExportArtifact,
    ExportFormat,
    RecordSummary,
    SummaryReportView,
    TypeBreakdown,
)
from calc_audit_reporting.service import ReportingService
from calc_audit_reporting.sinks import ArtifactSink, LocalDirectorySink

__all__ = [
    "ArtifactSink",
    "AuditStatistics",
    "ExportArtifact",
    "ExportConfig",
    "ExportFormat",
    "ExportService",
    "LocalDirectorySink",
    "RecordSummary",
    "ReportingService",
    "SummaryReportView",
    "TypeBreakdown",
]
