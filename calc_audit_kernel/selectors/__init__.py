"""Read-only query selectors."""

from calc_audit_kernel.selectors.base import BaseSelector
from calc_audit_kernel.selectors.calculation_selector import (
    AmendmentSelector,
    CalculationSelector,
)

__all__ = ["AmendmentSelector", "BaseSelector", "CalculationSelector"]
