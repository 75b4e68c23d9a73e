"""
Module: calc_audit_kernel.models.calculation
Responsibility: ORM persistence for calculation records, their breakdown
    steps, and the per-record lineage head used to serialize approvals.

Architecture position: Kernel > Models.  May import from db/ only (DTO
    conversion imports domain lazily).

Invariants enforced:
    - calculation_version is UNIQUE.
    - (record_id, step_number) is UNIQUE: no duplicate step numbers.
    - One lineage head per record (UNIQUE record_id).
    - Content columns are write-once; db/immutability.py blocks edits to
      anything but status/validated_by/validated_at.  Steps are never
      updated or deleted.

Failure modes:
    - IntegrityError on a duplicate version or step number.
    - StaleDataError when two transactions advance the same lineage head.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from calc_audit_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from calc_audit_kernel.domain.dtos import (
        BreakdownStepView,
        CalculationRecordView,
        LineageHeadView,
    )

# Columns of a record that may change after insert.
MUTABLE_RECORD_COLUMNS: frozenset[str] = frozenset({
    "status",
    "validated_by",
    "validated_at",
})


class CalculationRecordModel(Base):
    """
    One tax computation event.

    Contract:
        Append-only.  Corrections arrive as new records created by an
        approved amendment, linked back through amends_record_id.
    """

    __tablename__ = "calculation_records"

    __table_args__ = (
        UniqueConstraint("calculation_version", name="uq_calculation_records_version"),
        CheckConstraint(
            "status IN ('ACTIVE', 'SUPERSEDED', 'DISPUTED')",
            name="ck_calculation_records_valid_status",
        ),
        CheckConstraint(
            "calculation_type IN ('VAT', 'CIT', 'TRANSFER_PRICING', 'DMTT', "
            "'PENALTY', 'OTHER')",
            name="ck_calculation_records_valid_type",
        ),
        Index(
            "ix_calculation_records_company_type_ts",
            "company_id", "calculation_type", "timestamp",
        ),
        Index("ix_calculation_records_company_ts", "company_id", "timestamp"),
        Index("ix_calculation_records_reference", "reference_id"),
    )

    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    calculation_type: Mapped[str] = mapped_column(String(32), nullable=False)
    calculation_version: Mapped[str] = mapped_column(String(32), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    input_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    final_result: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    calculation_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    method_used: Mapped[str] = mapped_column(String(100), nullable=False)
    regulatory_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")
    validated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    is_amendment: Mapped[bool] = mapped_column(nullable=False, default=False)
    amends_record_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("calculation_records.id"),
        nullable=True,
    )
    # No FK: amendments reference records, so a back FK would form a cycle.
    amendment_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    steps: Mapped[list["BreakdownStepModel"]] = relationship(
        "BreakdownStepModel",
        back_populates="record",
        order_by="BreakdownStepModel.step_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<CalculationRecord {self.id} {self.calculation_type} "
            f"version={self.calculation_version} status={self.status}>"
        )

    def to_dto(self) -> CalculationRecordView:
        """Convert ORM model to frozen domain DTO."""
        from calc_audit_kernel.domain.dtos import CalculationRecordView

        return CalculationRecordView.from_model(self)


class BreakdownStepModel(Base):
    """
    One ordered line of a record's derivation.  Immutable from creation.
    """

    __tablename__ = "calculation_breakdown_steps"

    __table_args__ = (
        UniqueConstraint("record_id", "step_number", name="uq_breakdown_steps_record_step"),
        CheckConstraint("step_number >= 1", name="ck_breakdown_steps_positive_number"),
    )

    record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("calculation_records.id"),
        nullable=False,
        index=True,
    )
    step_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    formula: Mapped[str | None] = mapped_column(Text, nullable=True)
    input_values: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    calculation: Mapped[str] = mapped_column(Text, nullable=False)
    result: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    regulatory_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    record: Mapped["CalculationRecordModel"] = relationship(
        "CalculationRecordModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        return f"<BreakdownStep record={self.record_id} #{self.step_number}>"

    def to_dto(self) -> BreakdownStepView:
        """Convert ORM model to frozen domain DTO."""
        from calc_audit_kernel.domain.dtos import BreakdownStepView

        return BreakdownStepView.from_model(self)


class CalculationLineageModel(Base):
    """
    Lineage head of one calculation record.

    Created in the same transaction as the record.  Points at the approved
    amendment currently in force for the record (if any) and the record that
    amendment produced.  Every approval advances the head, and the
    optimistic version_id makes two concurrent approvals for the same
    record collide: the second flush matches zero rows.
    """

    __tablename__ = "calculation_lineage"

    __table_args__ = (
        UniqueConstraint("record_id", name="uq_calculation_lineage_record"),
    )

    record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("calculation_records.id"),
        nullable=False,
    )
    active_record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("calculation_records.id"),
        nullable=False,
    )
    active_amendment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("calculation_amendments.id"),
        nullable=True,
    )
    approvals: Mapped[int] = mapped_column(nullable=False, default=0)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version_id: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<CalculationLineage record={self.record_id} "
            f"active={self.active_record_id} v{self.version_id}>"
        )

    def to_dto(self) -> LineageHeadView:
        """Detached snapshot; the row itself stays inside the session."""
        from calc_audit_kernel.domain.dtos import LineageHeadView

        return LineageHeadView.from_model(self)
