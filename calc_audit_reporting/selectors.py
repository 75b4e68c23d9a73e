"""
Read-only queries over persisted summary reports.

Listings are newest first by ``generated_at``; ties break on id so the
order is stable.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from calc_audit_kernel.selectors.base import BaseSelector
from calc_audit_reporting.models import SummaryReportView
from calc_audit_reporting.orm import SummaryReportModel


class ReportSelector(BaseSelector[SummaryReportModel]):
    """Read-side queries for summary reports."""

    def get(self, report_id: UUID) -> SummaryReportView | None:
        model = self.session.get(SummaryReportModel, report_id)
        return model.to_dto() if model is not None else None

    def for_company(
        self,
        company_id: str,
        report_period: str | None = None,
    ) -> list[SummaryReportView]:
        stmt = select(SummaryReportModel).where(SummaryReportModel.company_id == company_id)
        if report_period is not None:
            stmt = stmt.where(SummaryReportModel.report_period == report_period)
        stmt = stmt.order_by(
            SummaryReportModel.generated_at.desc(),
            SummaryReportModel.id.desc(),
        )
        return [row.to_dto() for row in self.session.scalars(stmt).all()]
