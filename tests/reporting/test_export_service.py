"""
Tests for the export pipeline.

Verifies:
- JSON, CSV and XLSX artifacts carry the report's records
- Breakdown columns/sheets appear only on request
- Export metadata is recorded on the report; last export wins
- Unsupported formats and unknown reports fail before any I/O
- A failing sink leaves the report unexported
"""

import csv
import io
import json
from decimal import Decimal
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname
from uuid import uuid4

import pytest
from openpyxl import load_workbook

from calc_audit_kernel.exceptions import (
    ExportStorageError,
    ReportNotFoundError,
    UnsupportedFormatError,
)
from calc_audit_reporting import ArtifactSink, ExportConfig, ExportFormat, ExportService
from calc_audit_reporting.exporters import CSV_BREAKDOWN_COLUMNS, CSV_COLUMNS
from tests.conftest import FIXED_NOW, TEST_COMPANY_ID, TEST_REVIEWER_ID


class _FailingSink(ArtifactSink):
    def __init__(self):
        self.calls = 0

    def store(self, file_name, content, content_type):
        self.calls += 1
        raise ExportStorageError(file_name, "bucket unavailable")


class _MemorySink(ArtifactSink):
    def __init__(self):
        self.files = {}

    def store(self, file_name, content, content_type):
        self.files[file_name] = (content, content_type)
        return f"memory://{file_name}"


@pytest.fixture
def report(reporting_service, record_calculation):
    record_calculation(total="1000")
    record_calculation(total="2000", compliant=False)
    record_calculation(total="3000")
    return reporting_service.generate_summary_report(
        TEST_COMPANY_ID, "monthly", "2025-01", TEST_REVIEWER_ID,
    )


def _read(export_config: ExportConfig, file_name: str) -> bytes:
    return (Path(export_config.export_root) / file_name).read_bytes()


class TestJsonExport:

    def test_document(self, export_service, export_config, report):
        artifact = export_service.export(report.id, "json")

        assert artifact.file_name == f"calculation-report-{TEST_COMPANY_ID}-2025-01-{report.id}.json"
        assert artifact.content_type == "application/json"
        assert artifact.location.startswith("file://")
        content = _read(export_config, artifact.file_name)
        assert artifact.size_bytes == len(content)

        document = json.loads(content)
        assert document["report"]["id"] == str(report.id)
        assert document["report"]["period"] == "2025-01"
        assert document["report"]["totalCalculations"] == 3
        assert Decimal(document["report"]["totalTaxAmount"]) == Decimal("6000")
        assert document["report"]["summary"]["complianceRate"] == "66.67"

        calculations = document["calculations"]
        assert {c["id"] for c in calculations} == {str(rid) for rid in report.record_ids}
        assert sorted(Decimal(c["result"]["totalAmount"]) for c in calculations) == [
            Decimal("1000"), Decimal("2000"), Decimal("3000"),
        ]
        first = calculations[0]
        assert first["type"] == "VAT"
        assert first["status"] == "ACTIVE"
        assert first["isAmendment"] is False
        assert [s["stepNumber"] for s in first["breakdown"]] == [1, 2]
        assert Decimal(first["breakdown"][1]["result"]) == Decimal(first["result"]["totalAmount"])

    def test_without_breakdown(self, export_service, export_config, report):
        artifact = export_service.export(report.id, ExportFormat.JSON, include_breakdown=False)
        document = json.loads(_read(export_config, artifact.file_name))
        assert all("breakdown" not in c for c in document["calculations"])

    def test_amendment_lineage_exported(
        self, export_service, export_config, reporting_service, amendment_service,
        record_calculation,
    ):
        recorded = record_calculation(total="6000")
        amendment_id = amendment_service.create_amendment(
            recorded.record_id, "calculation", "CORRECTION",
            {"finalResult.totalAmount": {"newValue": "5500"}}, "rate fix", "user-042",
        )
        new_record_id = amendment_service.approve_amendment(amendment_id, TEST_REVIEWER_ID)
        report = reporting_service.generate_summary_report(
            TEST_COMPANY_ID, "monthly", "2025-01", TEST_REVIEWER_ID,
        )

        artifact = export_service.export(report.id, "json")
        document = json.loads(_read(export_config, artifact.file_name))
        by_id = {c["id"]: c for c in document["calculations"]}
        amended = by_id[str(new_record_id)]
        assert amended["isAmendment"] is True
        assert amended["amendsRecordId"] == str(recorded.record_id)
        assert amended["validatedBy"] == TEST_REVIEWER_ID
        assert len(amended["breakdown"]) == 3


class TestCsvExport:

    def test_rows(self, export_service, export_config, report):
        artifact = export_service.export(report.id, "CSV")
        assert artifact.content_type == "text/csv"

        rows = list(csv.reader(io.StringIO(_read(export_config, artifact.file_name).decode())))
        assert rows[0] == list(CSV_COLUMNS) + list(CSV_BREAKDOWN_COLUMNS)
        assert len(rows) == 4
        amounts = sorted(row[5] for row in rows[1:])
        assert amounts == ["1000.00", "2000.00", "3000.00"]
        by_amount = {row[5]: row for row in rows[1:]}
        assert by_amount["2000.00"][9] == "no"
        assert by_amount["1000.00"][9] == "yes"
        assert by_amount["1000.00"][11] == "2"
        assert "Output VAT at 5%" in by_amount["1000.00"][12]

    def test_without_breakdown_columns(self, export_service, export_config, report):
        artifact = export_service.export(report.id, "csv", include_breakdown=False)
        rows = list(csv.reader(io.StringIO(_read(export_config, artifact.file_name).decode())))
        assert rows[0] == list(CSV_COLUMNS)
        assert all(len(row) == len(CSV_COLUMNS) for row in rows)

    def test_display_precision_and_delimiter(
        self, session_factory, deterministic_clock, reporting_service, record_calculation,
        tmp_path,
    ):
        record_calculation(total="1234.565")
        report = reporting_service.generate_summary_report(
            TEST_COMPANY_ID, "monthly", "2025-01", TEST_REVIEWER_ID,
        )
        config = ExportConfig(export_root=tmp_path / "out", csv_delimiter=";")
        service = ExportService(session_factory, config=config, clock=deterministic_clock)

        artifact = service.export(report.id, "csv", include_breakdown=False)
        rows = list(csv.reader(
            io.StringIO(_read(config, artifact.file_name).decode()), delimiter=";",
        ))
        assert rows[1][5] == "1234.57"


class TestXlsxExport:

    def test_workbook(self, export_service, export_config, report):
        artifact = export_service.export(report.id, "xlsx")
        assert artifact.file_name.endswith(".xlsx")
        assert artifact.content_type == ExportFormat.XLSX.content_type

        wb = load_workbook(io.BytesIO(_read(export_config, artifact.file_name)))
        assert wb.sheetnames == ["Summary", "Calculations", "Breakdown"]

        summary = {
            row[0]: row[1]
            for row in wb["Summary"].iter_rows(values_only=True)
            if row and row[0] is not None
        }
        assert summary["Report ID"] == str(report.id)
        assert summary["Total Calculations"] == 3
        assert Decimal(str(summary["Total Tax Amount"])) == Decimal("6000")
        assert Decimal(str(summary["Compliance Rate"])) == Decimal("66.67")
        assert summary["VAT"] == 3

        calcs = list(wb["Calculations"].iter_rows(values_only=True))
        assert list(calcs[0]) == list(CSV_COLUMNS)
        assert len(calcs) == 4
        assert wb["Calculations"]["A1"].font.bold is True

        steps = list(wb["Breakdown"].iter_rows(values_only=True))
        assert len(steps) == 1 + 3 * 2

    def test_excel_alias_without_breakdown(self, export_service, export_config, report):
        artifact = export_service.export(report.id, "excel", include_breakdown=False)
        wb = load_workbook(io.BytesIO(_read(export_config, artifact.file_name)))
        assert wb.sheetnames == ["Summary", "Calculations"]
        assert export_service.config is export_config


class TestExportMetadata:

    def test_recorded_on_report(self, export_service, reporting_service, report):
        artifact = export_service.export(report.id, "json")

        stored = reporting_service.get_report(report.id)
        assert stored.is_exported is True
        assert stored.exported_at == FIXED_NOW
        assert stored.export_format == "JSON"
        assert stored.export_path == artifact.location
        assert stored.export_file_name == artifact.file_name
        assert stored.total_tax_amount == report.total_tax_amount

    def test_last_export_wins(self, export_service, reporting_service, report, deterministic_clock):
        export_service.export(report.id, "json")
        deterministic_clock.advance(300)
        export_service.export(report.id, "csv")

        stored = reporting_service.get_report(report.id)
        assert stored.export_format == "CSV"
        assert stored.export_file_name == f"calculation-report-{TEST_COMPANY_ID}-2025-01-{report.id}.csv"
        assert stored.exported_at == deterministic_clock.now()

    def test_same_period_reports_keep_their_own_files(
        self, export_service, reporting_service, record_calculation, report,
    ):
        record_calculation(total="700", company_id="company-002")
        other = reporting_service.generate_summary_report(
            "company-002", "monthly", "2025-01", TEST_REVIEWER_ID,
        )
        rerun = reporting_service.generate_summary_report(
            TEST_COMPANY_ID, "monthly", "2025-01", TEST_REVIEWER_ID,
        )

        for generated in (report, other, rerun):
            export_service.export(generated.id, "json")

        paths = set()
        for generated in (report, other, rerun):
            stored = reporting_service.get_report(generated.id)
            paths.add(stored.export_path)
            document = json.loads(Path(url2pathname(urlparse(stored.export_path).path)).read_bytes())
            assert document["report"]["id"] == str(generated.id)
            assert document["report"]["companyId"] == generated.company_id
        assert len(paths) == 3

    def test_company_id_is_made_file_safe(self, export_config):
        report_id = uuid4()
        name = export_config.file_name_for("../acme/co", "2025-01", report_id, "csv")
        assert "/" not in name
        assert name == f"calculation-report-_acme_co-2025-01-{report_id}.csv"

    def test_custom_sink_location(self, session_factory, reporting_service, report):
        sink = _MemorySink()
        service = ExportService(session_factory, sink=sink)

        artifact = service.export(report.id, "csv")

        assert artifact.location == f"memory://calculation-report-{TEST_COMPANY_ID}-2025-01-{report.id}.csv"
        assert sink.files[artifact.file_name][1] == "text/csv"
        assert reporting_service.get_report(report.id).export_path == artifact.location

    def test_logs_export(self, export_service, report, captured_logs):
        export_service.export(report.id, "json")
        events = [r for r in captured_logs() if r["message"] == "report_exported"]
        assert len(events) == 1
        assert events[0]["report_id"] == str(report.id)
        assert events[0]["record_count"] == 3


class TestExportFailures:

    def test_unsupported_format(self, export_service, reporting_service, report):
        with pytest.raises(UnsupportedFormatError) as exc_info:
            export_service.export(report.id, "pdf")
        assert exc_info.value.export_format == "pdf"
        assert "excel" in exc_info.value.supported
        assert reporting_service.get_report(report.id).is_exported is False

    def test_unknown_report(self, export_service, export_config):
        with pytest.raises(ReportNotFoundError):
            export_service.export(uuid4(), "json")
        assert not Path(export_config.export_root).exists()

    def test_sink_failure_leaves_report_unexported(
        self, session_factory, reporting_service, report,
    ):
        sink = _FailingSink()
        service = ExportService(session_factory, sink=sink)

        with pytest.raises(ExportStorageError):
            service.export(report.id, "csv")

        assert sink.calls == 1
        stored = reporting_service.get_report(report.id)
        assert stored.is_exported is False
        assert stored.export_path is None

    def test_local_sink_rejects_nested_names(self, tmp_path):
        from calc_audit_reporting import LocalDirectorySink

        with pytest.raises(ExportStorageError):
            LocalDirectorySink(tmp_path).store("../escape.csv", b"x", "text/csv")
