"""Services for the calculation audit kernel (write side)."""

from calc_audit_kernel.services.amendment_service import AmendmentService
from calc_audit_kernel.services.calculation_store import CalculationStore
from calc_audit_kernel.services.retry import retry_on_persistence_error

__all__ = [
    "AmendmentService",
    "CalculationStore",
    "retry_on_persistence_error",
]
