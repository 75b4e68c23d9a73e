"""
Tests for summary report generation and audit statistics.

Verifies:
- Period totals, type breakdown and rates over stored records
- Empty periods report 100% compliance and 0% amendments
- Generation is append-only and repeatable
- Type filtering and amendment counting
- Report listing and lookup
- Company-wide audit statistics
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from calc_audit_kernel.exceptions import (
    InvalidReportPeriodError,
    InvalidReportRequestError,
    ReportNotFoundError,
)
from tests.conftest import TEST_COMPANY_ID, TEST_REVIEWER_ID, TEST_USER_ID


def _generate(reporting_service, period="2025-01", **kwargs):
    return reporting_service.generate_summary_report(
        kwargs.pop("company_id", TEST_COMPANY_ID),
        kwargs.pop("report_type", "monthly"),
        period,
        kwargs.pop("generated_by", TEST_REVIEWER_ID),
        **kwargs,
    )


class TestGenerateSummaryReport:

    def test_period_totals(self, reporting_service, record_calculation):
        ids = {
            record_calculation(total="1000").record_id,
            record_calculation(total="2000", compliant=False).record_id,
            record_calculation(total="3000").record_id,
        }

        report = _generate(reporting_service)

        assert report.total_calculations == 3
        assert report.total_tax_amount == Decimal("6000")
        assert report.compliance_rate == Decimal("66.67")
        assert report.amendment_rate == Decimal("0.00")
        assert report.breakdown_by_type == {"VAT": {"count": 3, "amount": "6000"}}
        assert report.summary_data["averageAmount"] == "2000.00"
        assert report.summary_data["calculationTypes"] == ["VAT"]
        assert report.summary_data["totalsByCurrency"] == {"AED": "6000"}
        assert set(report.record_ids) == ids
        assert report.period_start == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert report.period_end == datetime(2025, 2, 1, tzinfo=timezone.utc)
        assert report.generated_by == TEST_REVIEWER_ID
        assert report.is_exported is False

    def test_empty_period(self, reporting_service, record_calculation):
        record_calculation(total="1000")

        report = _generate(reporting_service, period="2024-12")

        assert report.total_calculations == 0
        assert report.total_tax_amount == Decimal("0")
        assert report.compliance_rate == Decimal("100.00")
        assert report.amendment_rate == Decimal("0.00")
        assert report.breakdown_by_type == {}
        assert report.record_ids == ()

    def test_records_outside_window_excluded(
        self, reporting_service, record_calculation, deterministic_clock,
    ):
        january = record_calculation(total="1000")
        deterministic_clock.set_time(datetime(2025, 2, 3, 9, tzinfo=timezone.utc))
        record_calculation(total="7000")

        report = _generate(reporting_service)
        assert report.record_ids == (january.record_id,)
        assert report.total_tax_amount == Decimal("1000")

        annual = _generate(reporting_service, period="2025")
        assert annual.total_calculations == 2

    def test_other_companies_excluded(self, reporting_service, record_calculation):
        record_calculation(total="1000")
        record_calculation(total="9999", company_id="other-co")

        report = _generate(reporting_service)
        assert report.total_calculations == 1

    def test_append_only_and_repeatable(self, reporting_service, record_calculation):
        record_calculation(total="1000")
        record_calculation(total="2500", calculation_type="CIT")

        first = _generate(reporting_service)
        second = _generate(reporting_service)

        assert first.id != second.id
        assert first.total_calculations == second.total_calculations
        assert first.total_tax_amount == second.total_tax_amount
        assert first.breakdown_by_type == second.breakdown_by_type
        assert first.summary_data == second.summary_data
        assert len(reporting_service.list_reports(TEST_COMPANY_ID, "2025-01")) == 2

    def test_type_filter(self, reporting_service, record_calculation):
        record_calculation(total="1000")
        cit = record_calculation(total="2500", calculation_type="CIT")

        report = _generate(reporting_service, calculation_type="CIT")
        assert report.calculation_type == "CIT"
        assert report.record_ids == (cit.record_id,)
        assert report.breakdown_by_type == {"CIT": {"count": 1, "amount": "2500"}}

    def test_amendments_counted(
        self, reporting_service, amendment_service, record_calculation,
    ):
        recorded = record_calculation(total="6000")
        amendment_id = amendment_service.create_amendment(
            recorded.record_id, "calculation", "CORRECTION",
            {"finalResult.totalAmount": {"newValue": "5500"}}, "rate fix", TEST_USER_ID,
        )
        amendment_service.approve_amendment(amendment_id, TEST_REVIEWER_ID)

        report = _generate(reporting_service)

        # the amended record falls inside the window alongside the original
        assert report.total_calculations == 2
        assert report.total_tax_amount == Decimal("11500")
        assert report.summary_data["amendmentCount"] == 1
        assert report.amendment_rate == Decimal("50.00")

        filtered = _generate(reporting_service, calculation_type="CIT")
        assert filtered.summary_data["amendmentCount"] == 0

    def test_logs_generation(self, reporting_service, record_calculation, captured_logs):
        record_calculation(total="1000")
        report = _generate(reporting_service)

        events = [r for r in captured_logs() if r["message"] == "summary_report_generated"]
        assert len(events) == 1
        assert events[0]["report_id"] == str(report.id)
        assert events[0]["total_tax_amount"] == "1000"
        assert events[0]["compliance_rate"] == "100.00"

    @pytest.mark.parametrize("period", ["2025-13", "January", "25-01"])
    def test_malformed_period(self, reporting_service, period):
        with pytest.raises(InvalidReportPeriodError):
            _generate(reporting_service, period=period)
        assert reporting_service.list_reports(TEST_COMPANY_ID) == []

    @pytest.mark.parametrize("field,kwargs", [
        ("company_id", {"company_id": ""}),
        ("report_type", {"report_type": " "}),
        ("generated_by", {"generated_by": None}),
        ("calculation_type", {"calculation_type": "GST"}),
    ])
    def test_invalid_request(self, reporting_service, field, kwargs):
        with pytest.raises(InvalidReportRequestError) as exc_info:
            _generate(reporting_service, **kwargs)
        assert exc_info.value.field == field


class TestReportReads:

    def test_get_report(self, reporting_service, record_calculation):
        record_calculation()
        report = _generate(reporting_service)
        fetched = reporting_service.get_report(report.id)
        assert fetched == report

    def test_unknown_report(self, reporting_service):
        with pytest.raises(ReportNotFoundError):
            reporting_service.get_report(uuid4())

    def test_list_newest_first(self, reporting_service, deterministic_clock):
        january = _generate(reporting_service, period="2025-01")
        deterministic_clock.advance(60)
        december = _generate(reporting_service, period="2024-12")
        deterministic_clock.advance(60)
        _generate(reporting_service, period="2025-01", company_id="other-co")

        listed = reporting_service.list_reports(TEST_COMPANY_ID)
        assert [r.id for r in listed] == [december.id, january.id]
        assert [r.id for r in reporting_service.list_reports(TEST_COMPANY_ID, "2025-01")] == [
            january.id,
        ]

    def test_list_rejects_malformed_period(self, reporting_service):
        with pytest.raises(InvalidReportPeriodError):
            reporting_service.list_reports(TEST_COMPANY_ID, "2025/01")

    def test_record_ids_are_uuids(self, reporting_service, record_calculation):
        record_calculation()
        report = _generate(reporting_service)
        assert all(isinstance(rid, UUID) for rid in report.record_ids)


class TestAuditStatistics:

    def test_statistics(
        self, reporting_service, store, amendment_service, record_calculation,
        deterministic_clock,
    ):
        deterministic_clock.set_time(datetime(2024, 12, 20, tzinfo=timezone.utc))
        december = record_calculation(total="1000")
        amendment_service.create_amendment(
            december.record_id, "calculation", "CORRECTION",
            {"finalResult.totalAmount": {"newValue": "900"}}, "fix", TEST_USER_ID,
        )
        deterministic_clock.set_time(datetime(2025, 1, 15, 12, tzinfo=timezone.utc))
        unsound = record_calculation(total="2000", compliant=False)
        validated = record_calculation(total="3000")
        store.validate_calculation(validated.record_id, TEST_REVIEWER_ID)
        amendment_service.create_amendment(
            unsound.record_id, "calculation", "CORRECTION",
            {"finalResult.compliance.compliance": {"newValue": True}}, "fix", TEST_USER_ID,
        )

        stats = reporting_service.audit_statistics(TEST_COMPANY_ID)

        assert stats.company_id == TEST_COMPANY_ID
        assert stats.total_calculations == 3
        assert stats.calculations_this_month == 2
        # Rates cover January only; the December record and amendment are outside.
        assert stats.compliance_rate == Decimal("50.00")
        assert stats.amendment_rate == Decimal("50.00")
        assert stats.pending_validations == 2

    def test_compliance_read_from_stored_flag(
        self, reporting_service, amendment_service, record_calculation,
    ):
        for _ in range(3):
            record_calculation()
        unsound = record_calculation(compliant=False)
        amendment_id = amendment_service.create_amendment(
            unsound.record_id, "calculation", "CORRECTION",
            {"finalResult.compliance.compliance": {"newValue": True}}, "fix", TEST_USER_ID,
        )
        amendment_service.approve_amendment(amendment_id, TEST_REVIEWER_ID)
        record_calculation(company_id="company-002", compliant=False)

        stats = reporting_service.audit_statistics(TEST_COMPANY_ID)

        assert stats.calculations_this_month == 5
        assert stats.compliance_rate == Decimal("80.00")
        assert stats.amendment_rate == Decimal("20.00")

    def test_empty_company(self, reporting_service):
        stats = reporting_service.audit_statistics("nobody")
        assert stats.total_calculations == 0
        assert stats.calculations_this_month == 0
        assert stats.compliance_rate == Decimal("100.00")
        assert stats.amendment_rate == Decimal("0.00")
        assert stats.pending_validations == 0
