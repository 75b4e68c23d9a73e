"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through the engine:
    CalculationResult and CalculationStep (calculator input), the read-side
    views of records, steps and amendments, and small result objects such as
    RecordedCalculation and AmountReconciliation.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service layer (never from domain logic).

Invariants enforced:
    - Views are frozen dataclasses.  JSON blobs (input data, final result,
      amendment payloads) are deep-copied out of the ORM so a caller mutating
      a fetched blob can never write it back as the same version.
    - Monetary values are Decimal, never float.

Failure modes:
    - InvalidCalculationResultError from CalculationResult.from_dict() when
      required keys are missing or amounts are not numeric.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Mapping
from uuid import UUID

from calc_audit_kernel.db.types import to_decimal
from calc_audit_kernel.domain.values import (
    AmendmentStatus,
    AmendmentType,
    AmendmentUrgency,
    CalculationStatus,
    CalculationType,
)
from calc_audit_kernel.exceptions import InvalidCalculationResultError

if TYPE_CHECKING:
    from calc_audit_kernel.models.amendment import AmendmentRecordModel
    from calc_audit_kernel.models.calculation import (
        BreakdownStepModel,
        CalculationLineageModel,
        CalculationRecordModel,
    )


def _amount(value: Any, field_name: str) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError as exc:
        raise InvalidCalculationResultError(field_name, str(exc)) from exc


# =========================================================================
# Calculator input
# =========================================================================


@dataclass(frozen=True)
class CalculationStep:
    """
    One line of a calculation's derivation as handed over by a calculator.

    ``result`` is quantized to 4 places when the step is persisted; the
    value here is whatever the calculator produced.
    """

    step_number: int
    description: str
    calculation: str
    result: Decimal
    currency: str
    formula: str | None = None
    input_values: Mapping[str, Any] = field(default_factory=dict)
    regulatory_note: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], index: int = 0) -> CalculationStep:
        """
        Build a step from a calculator's camelCase mapping.

        Accepts ``stepNumber`` (or ``step``), ``inputs`` (or ``inputValues``)
        and ``regulatoryReference`` (or ``regulatoryNote``/``notes``).
        """
        prefix = f"breakdown[{index}]"
        step_number = data.get("stepNumber", data.get("step"))
        if step_number is None:
            raise InvalidCalculationResultError(f"{prefix}.stepNumber", "is required")
        if "result" not in data:
            raise InvalidCalculationResultError(f"{prefix}.result", "is required")
        note = (
            data.get("regulatoryNote")
            or data.get("regulatoryReference")
            or data.get("notes")
        )
        return cls(
            step_number=step_number,
            description=data.get("description", ""),
            calculation=data.get("calculation", ""),
            result=_amount(data["result"], f"{prefix}.result"),
            currency=data.get("currency", ""),
            formula=data.get("formula"),
            input_values=dict(data.get("inputs", data.get("inputValues")) or {}),
            regulatory_note=note,
        )


@dataclass(frozen=True)
class RegulatoryCompliance:
    """Calculator's compliance verdict and the regulation it relied on."""

    compliance: bool
    reference: str = ""
    regulation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "regulation": self.regulation,
            "reference": self.reference,
            "compliance": self.compliance,
        }


@dataclass(frozen=True)
class CalculationResult:
    """
    The value a calculator hands to the record store.

    Contract:
        ``breakdown`` is ordered; the store persists it in exactly this order
        keyed by step number.
    """

    total_amount: Decimal
    currency: str
    method: str
    breakdown: tuple[CalculationStep, ...]
    regulatory_compliance: RegulatoryCompliance
    metadata: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.breakdown, tuple):
            object.__setattr__(self, "breakdown", tuple(self.breakdown))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CalculationResult:
        """Build a result from the calculators' camelCase payload."""
        if "totalAmount" not in data or data["totalAmount"] is None:
            raise InvalidCalculationResultError("totalAmount", "is required")
        compliance = data.get("regulatoryCompliance") or {}
        return cls(
            total_amount=_amount(data["totalAmount"], "totalAmount"),
            currency=data.get("currency") or "",
            method=data.get("method") or "",
            breakdown=tuple(
                CalculationStep.from_dict(step, index)
                for index, step in enumerate(data.get("breakdown") or ())
            ),
            regulatory_compliance=RegulatoryCompliance(
                compliance=bool(compliance.get("compliance", False)),
                reference=compliance.get("reference", ""),
                regulation=compliance.get("regulation", ""),
            ),
            metadata=dict(data["metadata"]) if data.get("metadata") else None,
        )


# =========================================================================
# Store results and read-side views
# =========================================================================


@dataclass(frozen=True)
class RecordedCalculation:
    """Identity handed back by record_calculation()."""

    record_id: UUID
    version: str


@dataclass(frozen=True)
class LineageHeadView:
    """Where a record's lineage currently points, as of the read."""

    record_id: UUID
    active_record_id: UUID
    active_amendment_id: UUID | None
    approvals: int
    updated_at: datetime | None
    version_id: int

    @property
    def is_amended(self) -> bool:
        return self.active_record_id != self.record_id

    @classmethod
    def from_model(cls, model: CalculationLineageModel) -> LineageHeadView:
        return cls(
            record_id=model.record_id,
            active_record_id=model.active_record_id,
            active_amendment_id=model.active_amendment_id,
            approvals=model.approvals or 0,
            updated_at=model.updated_at,
            version_id=model.version_id,
        )


@dataclass(frozen=True)
class BreakdownStepView:
    """A persisted breakdown step."""

    step_number: int
    description: str
    formula: str | None
    input_values: dict[str, Any]
    calculation: str
    result: Decimal
    currency: str
    regulatory_note: str | None

    @classmethod
    def from_model(cls, model: BreakdownStepModel) -> BreakdownStepView:
        return cls(
            step_number=model.step_number,
            description=model.description,
            formula=model.formula,
            input_values=copy.deepcopy(model.input_values or {}),
            calculation=model.calculation,
            result=model.result,
            currency=model.currency,
            regulatory_note=model.regulatory_note,
        )

    def to_dict(self) -> dict[str, Any]:
        """Storage-shaped mapping, used for hashing and replacement breakdowns."""
        return {
            "step_number": self.step_number,
            "description": self.description,
            "formula": self.formula,
            "input_values": copy.deepcopy(self.input_values),
            "calculation": self.calculation,
            "result": self.result,
            "currency": self.currency,
            "regulatory_note": self.regulatory_note,
        }


@dataclass(frozen=True)
class CalculationRecordView:
    """
    Read-side snapshot of a calculation record.

    Guarantees:
        - Immutable (frozen dataclass).
        - input_data and final_result are private deep copies.
    """

    id: UUID
    company_id: str
    user_id: str
    calculation_type: CalculationType
    calculation_version: str
    reference_id: str | None
    input_data: dict[str, Any]
    final_result: dict[str, Any]
    method_used: str
    regulatory_reference: str | None
    status: CalculationStatus
    validated_by: str | None
    validated_at: datetime | None
    timestamp: datetime
    is_amendment: bool
    amends_record_id: UUID | None
    amendment_id: UUID | None
    notes: str | None
    result_hash: str

    @property
    def total_amount(self) -> Decimal:
        return to_decimal(self.final_result["totalAmount"])

    @property
    def currency(self) -> str:
        return self.final_result["currency"]

    @property
    def is_compliant(self) -> bool:
        return bool((self.final_result.get("compliance") or {}).get("compliance"))

    @classmethod
    def from_model(cls, model: CalculationRecordModel) -> CalculationRecordView:
        return cls(
            id=model.id,
            company_id=model.company_id,
            user_id=model.user_id,
            calculation_type=CalculationType(model.calculation_type),
            calculation_version=model.calculation_version,
            reference_id=model.reference_id,
            input_data=copy.deepcopy(model.input_data or {}),
            final_result=copy.deepcopy(model.final_result or {}),
            method_used=model.method_used,
            regulatory_reference=model.regulatory_reference,
            status=CalculationStatus(model.status),
            validated_by=model.validated_by,
            validated_at=model.validated_at,
            timestamp=model.timestamp,
            is_amendment=model.is_amendment,
            amends_record_id=model.amends_record_id,
            amendment_id=model.amendment_id,
            notes=model.notes,
            result_hash=model.result_hash,
        )


@dataclass(frozen=True)
class FieldChange:
    """One entry of an amendment's changes summary."""

    field: str
    old_value: Any
    new_value: Any
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class AmendmentView:
    """Read-side snapshot of an amendment request."""

    id: UUID
    original_record_id: UUID
    record_type: str
    amendment_type: AmendmentType
    previous_version: dict[str, Any]
    new_version: dict[str, Any]
    changes_summary: tuple[FieldChange, ...]
    reason: str
    amended_by: str
    status: AmendmentStatus
    urgency: AmendmentUrgency
    supporting_documents: tuple[str, ...]
    regulatory_deadline: datetime | None
    amended_at: datetime
    reviewed_by: str | None
    reviewed_at: datetime | None
    review_note: str | None
    resulting_record_id: UUID | None
    superseded_at: datetime | None

    @classmethod
    def from_model(cls, model: AmendmentRecordModel) -> AmendmentView:
        return cls(
            id=model.id,
            original_record_id=model.original_record_id,
            record_type=model.record_type,
            amendment_type=AmendmentType(model.amendment_type),
            previous_version=copy.deepcopy(model.previous_version or {}),
            new_version=copy.deepcopy(model.new_version or {}),
            changes_summary=tuple(
                FieldChange(
                    field=entry["field"],
                    old_value=copy.deepcopy(entry.get("oldValue")),
                    new_value=copy.deepcopy(entry.get("newValue")),
                    reason=entry.get("reason", ""),
                )
                for entry in (model.changes_summary or [])
            ),
            reason=model.reason,
            amended_by=model.amended_by,
            status=AmendmentStatus(model.status),
            urgency=AmendmentUrgency(model.urgency),
            supporting_documents=tuple(model.supporting_documents or ()),
            regulatory_deadline=model.regulatory_deadline,
            amended_at=model.amended_at,
            reviewed_by=model.reviewed_by,
            reviewed_at=model.reviewed_at,
            review_note=model.review_note,
            resulting_record_id=model.resulting_record_id,
            superseded_at=model.superseded_at,
        )


@dataclass(frozen=True)
class AmountReconciliation:
    """Outcome of comparing a recorded total against an expected amount."""

    is_valid: bool
    expected: Decimal
    recorded: Decimal
    difference: Decimal
    tolerance: Decimal
