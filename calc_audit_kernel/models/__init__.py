"""ORM models for the calculation audit kernel."""

from calc_audit_kernel.models.amendment import AmendmentRecordModel
from calc_audit_kernel.models.calculation import (
    BreakdownStepModel,
    CalculationLineageModel,
    CalculationRecordModel,
)

__all__ = [
    "AmendmentRecordModel",
    "BreakdownStepModel",
    "CalculationLineageModel",
    "CalculationRecordModel",
]
