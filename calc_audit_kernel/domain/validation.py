"""
Calculation payload validation (``calc_audit_kernel.domain.validation``).

Pure checks run before anything is written.  Each failure raises
InvalidCalculationResultError naming the offending field, so the caller can
point the user at it.  On success the payload comes back normalized into the
shapes the store persists: a JSON-safe final result mapping and storage-shaped
breakdown step mappings in submission order.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence

from calc_audit_kernel.db.types import (
    canonical_amount,
    round_step_result,
    to_decimal,
    validate_currency,
)
from calc_audit_kernel.domain.dtos import CalculationResult, CalculationStep
from calc_audit_kernel.domain.values import CalculationType
from calc_audit_kernel.exceptions import (
    InvalidCalculationResultError,
    InvalidCurrencyError,
)
from calc_audit_kernel.utils.hashing import canonicalize_json


@dataclass(frozen=True)
class NormalizedCalculation:
    """A validated CalculationResult in persistable form."""

    total_amount: Decimal
    currency: str
    method: str
    regulatory_reference: str | None
    final_result: dict[str, Any]
    steps: list[dict[str, Any]]
    metadata: dict[str, Any] | None


def to_json_safe(data: Any) -> Any:
    """
    Round-trip data through canonical JSON.

    Decimals become plain decimal strings, datetimes ISO strings and UUIDs
    strings, so what is hashed at write time is exactly what a JSON column
    hands back on read.
    """
    return json.loads(canonicalize_json(data))


def parse_calculation_type(value: CalculationType | str) -> CalculationType:
    try:
        return CalculationType(value)
    except ValueError:
        known = ", ".join(t.value for t in CalculationType)
        raise InvalidCalculationResultError(
            "calculation_type", f"unknown type {value!r} (expected one of {known})"
        ) from None


def require_identifier(value: Any, field_name: str) -> str:
    if value is None or str(value).strip() == "":
        raise InvalidCalculationResultError(field_name, "is required")
    return str(value)


def normalize_currency(currency: Any, field_name: str) -> str:
    try:
        return validate_currency(currency)
    except InvalidCurrencyError as exc:
        raise InvalidCalculationResultError(
            field_name, f"not a valid ISO 4217 code: {currency!r}"
        ) from exc


def normalize_steps(
    steps: Sequence[CalculationStep],
    default_currency: str,
    field_prefix: str = "breakdown",
) -> list[dict[str, Any]]:
    """
    Validate breakdown steps and convert them to storage-shaped mappings.

    Order of ``steps`` is preserved exactly.  Step numbers must be positive
    integers without duplicates; gaps are allowed.
    """
    if not steps:
        raise InvalidCalculationResultError(field_prefix, "must contain at least one step")

    seen: set[int] = set()
    normalized: list[dict[str, Any]] = []
    for index, step in enumerate(steps):
        where = f"{field_prefix}[{index}]"
        if not isinstance(step, CalculationStep):
            if isinstance(step, Mapping):
                step = CalculationStep.from_dict(step, index)
            else:
                raise InvalidCalculationResultError(where, "is not a calculation step")

        number = step.step_number
        if isinstance(number, bool) or not isinstance(number, int):
            raise InvalidCalculationResultError(f"{where}.step_number", "must be an integer")
        if number < 1:
            raise InvalidCalculationResultError(f"{where}.step_number", "must be >= 1")
        if number in seen:
            raise InvalidCalculationResultError(
                f"{where}.step_number", f"duplicate step number {number}"
            )
        seen.add(number)

        if not isinstance(step.description, str) or not step.description.strip():
            raise InvalidCalculationResultError(f"{where}.description", "is required")

        try:
            result = round_step_result(to_decimal(step.result))
        except ValueError as exc:
            raise InvalidCalculationResultError(f"{where}.result", str(exc)) from exc

        currency = (
            normalize_currency(step.currency, f"{where}.currency")
            if step.currency
            else default_currency
        )

        normalized.append({
            "step_number": number,
            "description": step.description,
            "formula": step.formula,
            "input_values": to_json_safe(dict(step.input_values or {})),
            "calculation": str(step.calculation or ""),
            "result": result,
            "currency": currency,
            "regulatory_note": step.regulatory_note,
        })
    return normalized


def validate_calculation_result(result: CalculationResult | Mapping[str, Any]) -> NormalizedCalculation:
    """
    Validate a calculator result and normalize it for persistence.

    Raises:
        InvalidCalculationResultError: naming the first offending field.
    """
    if isinstance(result, Mapping):
        result = CalculationResult.from_dict(result)
    if not isinstance(result, CalculationResult):
        raise InvalidCalculationResultError("result", "is not a CalculationResult")

    if result.total_amount is None:
        raise InvalidCalculationResultError("totalAmount", "is required")
    try:
        total = to_decimal(result.total_amount)
    except ValueError as exc:
        raise InvalidCalculationResultError("totalAmount", str(exc)) from exc

    if not result.currency:
        raise InvalidCalculationResultError("currency", "is required")
    currency = normalize_currency(result.currency, "currency")

    if not isinstance(result.method, str) or not result.method.strip():
        raise InvalidCalculationResultError("method", "is required")

    steps = normalize_steps(result.breakdown, currency)

    compliance = result.regulatory_compliance
    if compliance is None:
        raise InvalidCalculationResultError("regulatoryCompliance", "is required")

    final_result = {
        "totalAmount": canonical_amount(total),
        "currency": currency,
        "method": result.method,
        "compliance": {
            "regulation": compliance.regulation or "",
            "reference": compliance.reference or "",
            "compliance": bool(compliance.compliance),
        },
    }

    return NormalizedCalculation(
        total_amount=total,
        currency=currency,
        method=result.method,
        regulatory_reference=compliance.reference or None,
        final_result=final_result,
        steps=steps,
        metadata=to_json_safe(dict(result.metadata)) if result.metadata else None,
    )
