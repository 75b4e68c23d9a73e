"""
Summary Reporting Service (``calc_audit_reporting.service``).

Responsibility
--------------
Generates summary reports over a company's calculation records for a
period, persists each generated report as a new row, and serves audit
statistics.  Bridges the kernel selectors to the pure functions in
``aggregation.py``.

Architecture position
---------------------
**Reporting layer** -- reads kernel records through
``CalculationSelector``/``AmendmentSelector``, writes only its own
``SummaryReportModel`` rows.  Constructor: ``session_factory`` + ``clock``.

Invariants enforced
-------------------
* Reports are append-only -- every generation inserts a new row, even for a
  period that already has one.
* Figures are a pure function of the records in ``[period_start,
  period_end)``; generating twice with no intervening writes yields equal
  totals and breakdowns.
* All monetary amounts and rates use ``Decimal`` -- NEVER ``float``.
* The ids of the covered records are stored with the report, so exports
  render exactly the population the figures were computed from.

Failure modes
-------------
* Malformed period  -> ``InvalidReportPeriodError`` before any query.
* Missing company/report type/actor -> ``InvalidReportRequestError``.
* Unknown report id -> ``ReportNotFoundError``.
* Database failure -> ``PersistenceError`` (nothing persisted).

Audit relevance
---------------
Structured log events for every generation carry the period, filter and
resulting totals.
"""

from __future__ import annotations

from datetime import timezone
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from calc_audit_kernel.db.engine import transaction_scope
from calc_audit_kernel.domain.clock import Clock, SystemClock
from calc_audit_kernel.domain.values import CalculationType
from calc_audit_kernel.exceptions import InvalidReportRequestError, ReportNotFoundError
from calc_audit_kernel.logging_config import LogContext, get_logger
from calc_audit_kernel.selectors.calculation_selector import (
    AmendmentSelector,
    CalculationSelector,
)
from calc_audit_reporting.aggregation import (
    amendment_rate,
    breakdown_to_dict,
    build_summary_data,
    compliance_rate,
    period_bounds,
    summarize_records,
)
from calc_audit_reporting.models import AuditStatistics, SummaryReportView
from calc_audit_reporting.orm import SummaryReportModel
from calc_audit_reporting.selectors import ReportSelector

logger = get_logger("reporting.service")


def _require(value: str | None, field: str) -> str:
    if value is None or str(value).strip() == "":
        raise InvalidReportRequestError(field, "is required")
    return str(value)


def _parse_type_filter(value: CalculationType | str | None) -> CalculationType | None:
    if value is None:
        return None
    try:
        return CalculationType(value)
    except ValueError:
        raise InvalidReportRequestError(
            "calculation_type", f"unknown type {value!r}",
        ) from None


class ReportingService:
    """
    Summary report generation service.

    Contract
    --------
    * ``generate_summary_report`` returns the persisted ``SummaryReportView``.
    * Read methods return frozen views; nothing is mutated.

    Non-goals
    ---------
    * Does NOT schedule periodic generation; callers trigger it.
    * Does NOT render files (see ``ExportService``).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    # =========================================================================
    # Generation
    # =========================================================================

    def generate_summary_report(
        self,
        company_id: str,
        report_type: str,
        report_period: str,
        generated_by: str,
        calculation_type: CalculationType | str | None = None,
    ) -> SummaryReportView:
        """
        Aggregate the period's records and persist a new report row.

        Compliance rate is 100 when the period holds no records; amendment
        rate is 0 then.  Amendments count when raised inside the period
        against the company's records of the filtered type.
        """
        company_id = _require(company_id, "company_id")
        report_type = _require(report_type, "report_type")
        generated_by = _require(generated_by, "generated_by")
        type_filter = _parse_type_filter(calculation_type)
        period_start, period_end = period_bounds(report_period)

        with LogContext.bind(company_id=company_id, actor_id=generated_by):
            with transaction_scope(self._session_factory, "generate_summary_report") as session:
                records = CalculationSelector(session).in_period(
                    company_id, period_start, period_end, type_filter,
                )
                amendment_count = AmendmentSelector(session).count_for_company(
                    company_id, period_start, period_end, type_filter,
                )
                summary = summarize_records(records)

                report = SummaryReportModel(
                    id=uuid4(),
                    company_id=company_id,
                    report_type=report_type,
                    report_period=report_period,
                    calculation_type=type_filter.value if type_filter else None,
                    period_start=period_start,
                    period_end=period_end,
                    total_calculations=summary.total_calculations,
                    total_tax_amount=summary.total_tax_amount,
                    breakdown_by_type=breakdown_to_dict(summary),
                    summary_data=build_summary_data(report_period, summary, amendment_count),
                    record_ids=[str(r.id) for r in records],
                    generated_by=generated_by,
                    generated_at=self._clock.now(),
                )
                session.add(report)
                session.flush()
                view = report.to_dto()

            logger.info(
                "summary_report_generated",
                extra={
                    "report_id": str(view.id),
                    "report_type": report_type,
                    "report_period": report_period,
                    "calculation_type": view.calculation_type,
                    "total_calculations": view.total_calculations,
                    "total_tax_amount": str(view.total_tax_amount),
                    "compliance_rate": str(view.compliance_rate),
                    "amendment_rate": str(view.amendment_rate),
                },
            )
        return view

    # =========================================================================
    # Reads
    # =========================================================================

    def get_report(self, report_id: UUID) -> SummaryReportView:
        with transaction_scope(self._session_factory, "get_report") as session:
            view = ReportSelector(session).get(report_id)
        if view is None:
            raise ReportNotFoundError(str(report_id))
        return view

    def list_reports(
        self,
        company_id: str,
        report_period: str | None = None,
    ) -> list[SummaryReportView]:
        """Reports for a company, newest first, optionally for one period."""
        if report_period is not None:
            period_bounds(report_period)
        with transaction_scope(self._session_factory, "list_reports") as session:
            return ReportSelector(session).for_company(company_id, report_period)

    def audit_statistics(self, company_id: str) -> AuditStatistics:
        """
        Audit figures for a company.

        ``total_calculations`` and ``pending_validations`` cover every stored
        record. The calculation count, compliance rate and amendment rate
        cover the current month only: the injected clock's calendar month in
        UTC, with amendments counted by their own ``amended_at``.
        """
        company_id = _require(company_id, "company_id")
        now = self._clock.now().astimezone(timezone.utc)
        month_start, month_end = period_bounds(f"{now:%Y-%m}")

        with transaction_scope(self._session_factory, "audit_statistics") as session:
            records = CalculationSelector(session)
            total = records.count_for_company(company_id)
            compliant, this_month = records.compliant_count(
                company_id, since=month_start, until=month_end,
            )
            pending = records.count_pending_validation(company_id)
            amendments = AmendmentSelector(session).count_for_company(
                company_id, period_start=month_start, period_end=month_end,
            )

        stats = AuditStatistics(
            company_id=company_id,
            total_calculations=total,
            calculations_this_month=this_month,
            amendment_rate=amendment_rate(amendments, this_month),
            compliance_rate=compliance_rate(compliant, this_month),
            pending_validations=pending,
        )
        logger.debug(
            "audit_statistics_computed",
            extra={
                "company_id": company_id,
                "total_calculations": total,
                "pending_validations": pending,
            },
        )
        return stats
