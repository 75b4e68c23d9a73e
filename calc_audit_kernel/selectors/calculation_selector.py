"""
Module: calc_audit_kernel.selectors.calculation_selector
Responsibility: Read-only queries over calculation records, breakdown steps
    and amendments.
Architecture position: Kernel > Selectors.  Inherits BaseSelector.

Invariants enforced:
    - History and period listings are ordered newest first by (timestamp,
      calculation_version).  Version strings are fixed width, so their
      lexical order is their (clock, suffix) order.
    - Period filters are half-open: start <= timestamp < end.
    - Breakdown steps are always returned in step_number order.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, case, func, select

from calc_audit_kernel.domain.dtos import (
    AmendmentView,
    BreakdownStepView,
    CalculationRecordView,
    LineageHeadView,
)
from calc_audit_kernel.domain.values import CalculationStatus, CalculationType
from calc_audit_kernel.models.amendment import AmendmentRecordModel
from calc_audit_kernel.models.calculation import (
    BreakdownStepModel,
    CalculationLineageModel,
    CalculationRecordModel,
)
from calc_audit_kernel.selectors.base import BaseSelector


def _in_window(stmt: Select, since: datetime | None, until: datetime | None) -> Select:
    if since is not None:
        stmt = stmt.where(CalculationRecordModel.timestamp >= since)
    if until is not None:
        stmt = stmt.where(CalculationRecordModel.timestamp < until)
    return stmt


def _type_value(calculation_type: CalculationType | str | None) -> str | None:
    if calculation_type is None:
        return None
    return CalculationType(calculation_type).value


class CalculationSelector(BaseSelector[CalculationRecordModel]):
    """Read-side queries for calculation records."""

    def get_record(self, record_id: UUID) -> CalculationRecordView | None:
        model = self.session.get(CalculationRecordModel, record_id)
        return model.to_dto() if model is not None else None

    def get_steps(self, record_id: UUID) -> tuple[BreakdownStepView, ...]:
        rows = self.session.scalars(
            select(BreakdownStepModel)
            .where(BreakdownStepModel.record_id == record_id)
            .order_by(BreakdownStepModel.step_number)
        ).all()
        return tuple(row.to_dto() for row in rows)

    def get_lineage_head(self, record_id: UUID) -> LineageHeadView | None:
        head = self.session.scalars(
            select(CalculationLineageModel)
            .where(CalculationLineageModel.record_id == record_id)
        ).one_or_none()
        return head.to_dto() if head is not None else None

    def history(
        self,
        company_id: str,
        calculation_type: CalculationType | str,
        reference_id: str | None = None,
    ) -> list[CalculationRecordView]:
        stmt = (
            select(CalculationRecordModel)
            .where(CalculationRecordModel.company_id == company_id)
            .where(CalculationRecordModel.calculation_type == _type_value(calculation_type))
        )
        if reference_id is not None:
            stmt = stmt.where(CalculationRecordModel.reference_id == reference_id)
        stmt = stmt.order_by(
            CalculationRecordModel.timestamp.desc(),
            CalculationRecordModel.calculation_version.desc(),
        )
        return [row.to_dto() for row in self.session.scalars(stmt).all()]

    def in_period(
        self,
        company_id: str,
        period_start: datetime,
        period_end: datetime,
        calculation_type: CalculationType | str | None = None,
    ) -> list[CalculationRecordView]:
        stmt = (
            select(CalculationRecordModel)
            .where(CalculationRecordModel.company_id == company_id)
            .where(CalculationRecordModel.timestamp >= period_start)
            .where(CalculationRecordModel.timestamp < period_end)
        )
        type_value = _type_value(calculation_type)
        if type_value is not None:
            stmt = stmt.where(CalculationRecordModel.calculation_type == type_value)
        stmt = stmt.order_by(
            CalculationRecordModel.timestamp.desc(),
            CalculationRecordModel.calculation_version.desc(),
        )
        return [row.to_dto() for row in self.session.scalars(stmt).all()]

    def get_records(self, record_ids: list[UUID]) -> list[CalculationRecordView]:
        """Records by id, in the order the ids were given."""
        if not record_ids:
            return []
        rows = self.session.scalars(
            select(CalculationRecordModel).where(CalculationRecordModel.id.in_(record_ids))
        ).all()
        by_id = {row.id: row for row in rows}
        return [by_id[rid].to_dto() for rid in record_ids if rid in by_id]

    def count_for_company(self, company_id: str) -> int:
        return self.session.scalar(
            select(func.count(CalculationRecordModel.id))
            .where(CalculationRecordModel.company_id == company_id)
        ) or 0

    def count_pending_validation(self, company_id: str) -> int:
        return self.session.scalar(
            select(func.count(CalculationRecordModel.id))
            .where(CalculationRecordModel.company_id == company_id)
            .where(CalculationRecordModel.validated_at.is_(None))
            .where(CalculationRecordModel.status != CalculationStatus.SUPERSEDED.value)
        ) or 0

    def compliant_count(
        self,
        company_id: str,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> tuple[int, int]:
        """(compliant, total) for the company's records in ``[since, until)``."""
        flag = CalculationRecordModel.final_result["compliance"]["compliance"].as_boolean()
        stmt = _in_window(
            select(
                func.coalesce(func.sum(case((flag.is_(True), 1), else_=0)), 0),
                func.count(CalculationRecordModel.id),
            ).where(CalculationRecordModel.company_id == company_id),
            since,
            until,
        )
        compliant, total = self.session.execute(stmt).one()
        return int(compliant), int(total)


class AmendmentSelector(BaseSelector[AmendmentRecordModel]):
    """Read-side queries for amendments."""

    def get(self, amendment_id: UUID) -> AmendmentView | None:
        model = self.session.get(AmendmentRecordModel, amendment_id)
        return model.to_dto() if model is not None else None

    def for_original(self, original_record_id: UUID) -> list[AmendmentView]:
        rows = self.session.scalars(
            select(AmendmentRecordModel)
            .where(AmendmentRecordModel.original_record_id == original_record_id)
            .order_by(AmendmentRecordModel.amended_at, AmendmentRecordModel.id)
        ).all()
        return [row.to_dto() for row in rows]

    def count_for_company(
        self,
        company_id: str,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        calculation_type: CalculationType | str | None = None,
    ) -> int:
        """
        Amendments raised against the company's records.

        The window applies to the amendment's own ``amended_at``; the type
        filter applies to the amended record's calculation type.
        """
        stmt = (
            select(func.count(AmendmentRecordModel.id))
            .join(
                CalculationRecordModel,
                CalculationRecordModel.id == AmendmentRecordModel.original_record_id,
            )
            .where(CalculationRecordModel.company_id == company_id)
        )
        if period_start is not None:
            stmt = stmt.where(AmendmentRecordModel.amended_at >= period_start)
        if period_end is not None:
            stmt = stmt.where(AmendmentRecordModel.amended_at < period_end)
        type_value = _type_value(calculation_type)
        if type_value is not None:
            stmt = stmt.where(CalculationRecordModel.calculation_type == type_value)
        return self.session.scalar(stmt) or 0
