"""
Module: calc_audit_kernel.models.amendment
Responsibility: ORM persistence for amendment requests against calculation
    records.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - DB check constraint limits status, type and urgency values.
    - previous_version, new_version and changes_summary are write-once
      (db/immutability.py).
    - REJECTED and SUPERSEDED rows never change again; APPROVED rows may
      only move to SUPERSEDED.
    - version_id_col gives every amendment row an optimistic version, so
      two reviewers resolving the same amendment cannot both win.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from calc_audit_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from calc_audit_kernel.domain.dtos import AmendmentView

# Columns that reviewer actions and supersession may set.
MUTABLE_AMENDMENT_COLUMNS: frozenset[str] = frozenset({
    "status",
    "reviewed_by",
    "reviewed_at",
    "review_note",
    "resulting_record_id",
    "superseded_at",
    "version_id",
})


class AmendmentRecordModel(Base):
    """Persistent amendment request.

    Contract:
        Created PENDING.  Reviewer actions move it to APPROVED or REJECTED;
        a later approval for the same original moves APPROVED to SUPERSEDED.
    """

    __tablename__ = "calculation_amendments"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'SUPERSEDED')",
            name="ck_calculation_amendments_valid_status",
        ),
        CheckConstraint(
            "amendment_type IN ('CORRECTION', 'RECLASSIFICATION', 'WITHDRAWAL')",
            name="ck_calculation_amendments_valid_type",
        ),
        CheckConstraint(
            "urgency IN ('LOW', 'MEDIUM', 'HIGH', 'CRITICAL')",
            name="ck_calculation_amendments_valid_urgency",
        ),
        Index(
            "ix_calculation_amendments_original_status",
            "original_record_id", "status",
        ),
        Index("ix_calculation_amendments_amended_at", "amended_at"),
    )

    original_record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("calculation_records.id"),
        nullable=False,
    )
    record_type: Mapped[str] = mapped_column(String(50), nullable=False)
    amendment_type: Mapped[str] = mapped_column(String(32), nullable=False)
    previous_version: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    new_version: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    changes_summary: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    amended_by: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    urgency: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")
    supporting_documents: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    regulatory_deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    amended_at: Mapped[datetime] = mapped_column(nullable=False)
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    resulting_record_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("calculation_records.id"),
        nullable=True,
    )
    superseded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version_id: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Amendment {self.id} {self.amendment_type} "
            f"original={self.original_record_id} status={self.status}>"
        )

    def to_dto(self) -> AmendmentView:
        """Convert ORM model to frozen domain DTO."""
        from calc_audit_kernel.domain.dtos import AmendmentView

        return AmendmentView.from_model(self)
