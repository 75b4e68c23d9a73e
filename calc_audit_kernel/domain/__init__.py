"""
Pure domain layer.

Value types, DTOs, validation, version issuance and amendment logic with
NO dependencies on the ORM, the database or outer layers.
"""

from calc_audit_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
)
from calc_audit_kernel.domain.dtos import (
    AmendmentView,
    AmountReconciliation,
    BreakdownStepView,
    CalculationRecordView,
    CalculationResult,
    CalculationStep,
    FieldChange,
    LineageHeadView,
    RecordedCalculation,
    RegulatoryCompliance,
)
from calc_audit_kernel.domain.values import (
    AMENDMENT_TRANSITIONS,
    AmendmentStatus,
    AmendmentType,
    AmendmentUrgency,
    CalculationStatus,
    CalculationType,
)
from calc_audit_kernel.domain.versioning import (
    VersionIssuer,
    parse_version,
    version_sort_key,
)

__all__ = [
    "AMENDMENT_TRANSITIONS",
    "AmendmentStatus",
    "AmendmentType",
    "AmendmentUrgency",
    "AmendmentView",
    "AmountReconciliation",
    "BreakdownStepView",
    "CalculationRecordView",
    "CalculationResult",
    "CalculationStatus",
    "CalculationStep",
    "CalculationType",
    "Clock",
    "DeterministicClock",
    "FieldChange",
    "LineageHeadView",
    "RecordedCalculation",
    "RegulatoryCompliance",
    "SystemClock",
    "VersionIssuer",
    "parse_version",
    "version_sort_key",
]
