"""
Export renderers: report + records -> file bytes.

One renderer per ``ExportFormat``.  Renderers are pure: they take an
``ExportBundle`` already loaded by ``ExportService`` and return bytes.
No database access, no file I/O.

* JSON -- structured document, breakdown nested per calculation on request.
* CSV  -- one row per calculation, fixed columns; the two breakdown columns
  appear only when the breakdown is requested.
* XLSX -- openpyxl workbook: Summary sheet (with the By Type table),
  Calculations sheet, and a Breakdown sheet on request.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from openpyxl import Workbook
from openpyxl.styles import Font

from calc_audit_kernel.db.types import round_money, to_decimal
from calc_audit_kernel.domain.amendment import step_to_snapshot
from calc_audit_kernel.domain.dtos import BreakdownStepView, CalculationRecordView
from calc_audit_reporting.config import ExportConfig
from calc_audit_reporting.models import ExportFormat, SummaryReportView

CSV_COLUMNS: tuple[str, ...] = (
    "ID", "Type", "Version", "Timestamp", "Method",
    "Total Amount", "Currency", "Status", "Reference",
    "Compliant", "Amendment Of",
)
CSV_BREAKDOWN_COLUMNS: tuple[str, ...] = ("Breakdown Steps", "Breakdown Detail")

BREAKDOWN_SHEET_COLUMNS: tuple[str, ...] = (
    "Record ID", "Version", "Step", "Description", "Formula",
    "Calculation", "Result", "Currency", "Regulatory Note",
)


@dataclass(frozen=True)
class ExportBundle:
    """Everything a renderer needs, loaded in one read transaction."""

    report: SummaryReportView
    records: tuple[CalculationRecordView, ...]
    steps: dict[UUID, tuple[BreakdownStepView, ...]]

    def steps_for(self, record_id: UUID) -> tuple[BreakdownStepView, ...]:
        return self.steps.get(record_id, ())


Renderer = Callable[[ExportBundle, bool, ExportConfig], bytes]


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return format(obj, "f")
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""


def _display(amount: Decimal, config: ExportConfig) -> Decimal:
    return round_money(to_decimal(amount), config.display_precision)


# =========================================================================
# JSON
# =========================================================================


def report_header(report: SummaryReportView) -> dict[str, Any]:
    return {
        "id": str(report.id),
        "companyId": report.company_id,
        "reportType": report.report_type,
        "period": report.report_period,
        "calculationType": report.calculation_type,
        "periodStart": report.period_start.isoformat(),
        "periodEnd": report.period_end.isoformat(),
        "generatedAt": report.generated_at.isoformat(),
        "generatedBy": report.generated_by,
        "totalCalculations": report.total_calculations,
        "totalTaxAmount": format(report.total_tax_amount, "f"),
        "breakdownByType": report.breakdown_by_type,
        "summary": report.summary_data,
    }


def render_json(bundle: ExportBundle, include_breakdown: bool, config: ExportConfig) -> bytes:
    calculations = []
    for record in bundle.records:
        entry: dict[str, Any] = {
            "id": str(record.id),
            "type": record.calculation_type.value,
            "version": record.calculation_version,
            "timestamp": record.timestamp.isoformat(),
            "method": record.method_used,
            "status": record.status.value,
            "referenceId": record.reference_id,
            "isAmendment": record.is_amendment,
            "amendsRecordId": str(record.amends_record_id) if record.amends_record_id else None,
            "validatedBy": record.validated_by,
            "validatedAt": _iso(record.validated_at) or None,
            "result": record.final_result,
            "inputs": record.input_data,
        }
        if include_breakdown:
            entry["breakdown"] = [
                step_to_snapshot(step) for step in bundle.steps_for(record.id)
            ]
        calculations.append(entry)

    document = {"report": report_header(bundle.report), "calculations": calculations}
    return json.dumps(document, indent=2, default=_json_default).encode("utf-8")


# =========================================================================
# CSV
# =========================================================================


def _base_row(record: CalculationRecordView, config: ExportConfig) -> list[Any]:
    return [
        str(record.id),
        record.calculation_type.value,
        record.calculation_version,
        record.timestamp.isoformat(),
        record.method_used,
        format(_display(record.total_amount, config), "f"),
        record.currency,
        record.status.value,
        record.reference_id or "",
        "yes" if record.is_compliant else "no",
        str(record.amends_record_id) if record.amends_record_id else "",
    ]


def _step_detail(steps: tuple[BreakdownStepView, ...]) -> str:
    return " | ".join(
        f"{s.step_number}. {s.description} = {format(s.result, 'f')} {s.currency}"
        for s in steps
    )


def render_csv(bundle: ExportBundle, include_breakdown: bool, config: ExportConfig) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=config.csv_delimiter, lineterminator="\n")
    header = list(CSV_COLUMNS)
    if include_breakdown:
        header.extend(CSV_BREAKDOWN_COLUMNS)
    writer.writerow(header)

    for record in bundle.records:
        row = _base_row(record, config)
        if include_breakdown:
            steps = bundle.steps_for(record.id)
            row.extend([len(steps), _step_detail(steps)])
        writer.writerow(row)
    return buffer.getvalue().encode("utf-8")


# =========================================================================
# XLSX
# =========================================================================


def _bold_row(ws, values: list[Any]) -> None:
    ws.append(values)
    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)


def render_xlsx(bundle: ExportBundle, include_breakdown: bool, config: ExportConfig) -> bytes:
    report = bundle.report
    wb = Workbook()

    summary = wb.active
    summary.title = "Summary"
    _bold_row(summary, ["Field", "Value"])
    for label, value in (
        ("Report ID", str(report.id)),
        ("Company", report.company_id),
        ("Report Type", report.report_type),
        ("Period", report.report_period),
        ("Calculation Type", report.calculation_type or "ALL"),
        ("Generated At", report.generated_at.isoformat()),
        ("Generated By", report.generated_by),
        ("Total Calculations", report.total_calculations),
        ("Total Tax Amount", _display(report.total_tax_amount, config)),
        ("Average Amount", to_decimal(report.summary_data["averageAmount"])),
        ("Compliance Rate", report.compliance_rate),
        ("Amendment Rate", report.amendment_rate),
    ):
        summary.append([label, value])

    summary.append([])
    _bold_row(summary, ["By Type"])
    _bold_row(summary, ["Type", "Count", "Amount"])
    for calc_type, entry in sorted(report.breakdown_by_type.items()):
        summary.append([
            calc_type, entry["count"], _display(to_decimal(entry["amount"]), config),
        ])

    calcs = wb.create_sheet("Calculations")
    _bold_row(calcs, list(CSV_COLUMNS))
    for record in bundle.records:
        row = _base_row(record, config)
        row[5] = _display(record.total_amount, config)
        calcs.append(row)

    if include_breakdown:
        detail = wb.create_sheet("Breakdown")
        _bold_row(detail, list(BREAKDOWN_SHEET_COLUMNS))
        for record in bundle.records:
            for step in bundle.steps_for(record.id):
                detail.append([
                    str(record.id),
                    record.calculation_version,
                    step.step_number,
                    step.description,
                    step.formula or "",
                    step.calculation,
                    step.result,
                    step.currency,
                    step.regulatory_note or "",
                ])

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


RENDERERS: dict[ExportFormat, Renderer] = {
    ExportFormat.JSON: render_json,
    ExportFormat.CSV: render_csv,
    ExportFormat.XLSX: render_xlsx,
}


def render(
    export_format: ExportFormat,
    bundle: ExportBundle,
    include_breakdown: bool,
    config: ExportConfig,
) -> bytes:
    return RENDERERS[export_format](bundle, include_breakdown, config)
