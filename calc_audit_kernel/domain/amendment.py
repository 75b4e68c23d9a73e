"""
Amendment domain logic (``calc_audit_kernel.domain.amendment``).

Responsibility
--------------
Pure functions behind the amendment manager: validating a requested change
set, snapshotting the record being amended, detecting stale ``oldValue``
claims, deriving the changes summary, and applying an approved change set to
produce the content of the replacement record.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  Works on views and plain mappings.

Invariants enforced
-------------------
* Only the field paths in ``SUPPORTED_FIELDS`` (plus ``inputData.<key>``)
  can be amended.
* The changes summary is a cache: ``derive_changes_summary(previous,
  new)`` always reproduces it from the stored snapshot and change set.
* ``apply_changes`` never mutates its inputs; the original record's content
  is copied, never edited.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence

from calc_audit_kernel.db.types import canonical_amount, to_decimal
from calc_audit_kernel.domain.dtos import (
    BreakdownStepView,
    CalculationRecordView,
    CalculationStep,
    FieldChange,
)
from calc_audit_kernel.domain.validation import (
    normalize_currency,
    normalize_steps,
    to_json_safe,
)
from calc_audit_kernel.domain.values import AmendmentType
from calc_audit_kernel.exceptions import (
    InvalidAmendmentError,
    InvalidCalculationResultError,
)

TOTAL_AMOUNT = "finalResult.totalAmount"
CURRENCY = "finalResult.currency"
METHOD = "finalResult.method"
COMPLIANCE_FLAG = "finalResult.compliance.compliance"
COMPLIANCE_REFERENCE = "finalResult.compliance.reference"
BREAKDOWN = "breakdown"
INPUT_DATA_PREFIX = "inputData."

SUPPORTED_FIELDS: frozenset[str] = frozenset({
    TOTAL_AMOUNT,
    CURRENCY,
    METHOD,
    COMPLIANCE_FLAG,
    COMPLIANCE_REFERENCE,
    BREAKDOWN,
})


@dataclass(frozen=True)
class AmendedContent:
    """Content of the record an approved amendment produces."""

    input_data: dict[str, Any]
    final_result: dict[str, Any]
    method: str
    regulatory_reference: str | None
    steps: list[dict[str, Any]]


# =========================================================================
# Snapshots
# =========================================================================


def step_to_snapshot(step: BreakdownStepView | Mapping[str, Any]) -> dict[str, Any]:
    """Render a breakdown step in the calculators' camelCase JSON shape."""
    data = step.to_dict() if isinstance(step, BreakdownStepView) else step
    return {
        "stepNumber": data["step_number"],
        "description": data["description"],
        "formula": data.get("formula"),
        "inputValues": copy.deepcopy(data.get("input_values") or {}),
        "calculation": data["calculation"],
        "result": canonical_amount(to_decimal(data["result"])),
        "currency": data["currency"],
        "regulatoryNote": data.get("regulatory_note"),
    }


def snapshot_to_step(data: Mapping[str, Any]) -> dict[str, Any]:
    """Inverse of step_to_snapshot(): back to the storage shape."""
    return {
        "step_number": data["stepNumber"],
        "description": data["description"],
        "formula": data.get("formula"),
        "input_values": copy.deepcopy(data.get("inputValues") or {}),
        "calculation": data["calculation"],
        "result": to_decimal(data["result"]),
        "currency": data["currency"],
        "regulatory_note": data.get("regulatoryNote"),
    }


def build_snapshot(
    record: CalculationRecordView,
    steps: Sequence[BreakdownStepView],
) -> dict[str, Any]:
    """Capture the amended record's state at amendment time."""
    return {
        "recordId": str(record.id),
        "calculationVersion": record.calculation_version,
        "calculationType": record.calculation_type.value,
        "referenceId": record.reference_id,
        "status": record.status.value,
        "timestamp": record.timestamp.isoformat(),
        "methodUsed": record.method_used,
        "inputData": copy.deepcopy(record.input_data),
        "finalResult": copy.deepcopy(record.final_result),
        "breakdown": [step_to_snapshot(step) for step in steps],
    }


def current_value(snapshot: Mapping[str, Any], path: str) -> Any:
    """Value at ``path`` in a snapshot, or None when absent."""
    if path == BREAKDOWN:
        return copy.deepcopy(snapshot.get("breakdown"))
    node: Any = snapshot
    head, _, rest = path.partition(".")
    node = node.get(head)
    for part in rest.split(".") if rest else ():
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return copy.deepcopy(node)


# =========================================================================
# Change set validation
# =========================================================================


def _is_supported(path: str) -> bool:
    if path in SUPPORTED_FIELDS:
        return True
    return path.startswith(INPUT_DATA_PREFIX) and len(path) > len(INPUT_DATA_PREFIX)


def _normalize_breakdown_value(path: str, value: Any, currency: str) -> list[dict[str, Any]]:
    if not isinstance(value, (list, tuple)):
        raise InvalidAmendmentError(path, "must be a list of breakdown steps")
    try:
        steps = [
            step if isinstance(step, CalculationStep) else CalculationStep.from_dict(step, index)
            for index, step in enumerate(value)
        ]
        return [step_to_snapshot(s) for s in normalize_steps(steps, currency, path)]
    except InvalidCalculationResultError as exc:
        raise InvalidAmendmentError(exc.field, exc.reason) from exc
    except (AttributeError, TypeError) as exc:
        raise InvalidAmendmentError(path, "malformed breakdown step") from exc


def _normalize_new_value(path: str, value: Any, snapshot: Mapping[str, Any]) -> Any:
    if path == TOTAL_AMOUNT:
        try:
            return canonical_amount(to_decimal(value))
        except ValueError as exc:
            raise InvalidAmendmentError(path, str(exc)) from exc
    if path == CURRENCY:
        try:
            return normalize_currency(value, path)
        except InvalidCalculationResultError as exc:
            raise InvalidAmendmentError(path, exc.reason) from exc
    if path == METHOD:
        if not isinstance(value, str) or not value.strip():
            raise InvalidAmendmentError(path, "must be a non-empty string")
        return value
    if path == COMPLIANCE_FLAG:
        if not isinstance(value, bool):
            raise InvalidAmendmentError(path, "must be a boolean")
        return value
    if path == COMPLIANCE_REFERENCE:
        if not isinstance(value, str):
            raise InvalidAmendmentError(path, "must be a string")
        return value
    if path == BREAKDOWN:
        currency = (snapshot.get("finalResult") or {}).get("currency", "")
        return _normalize_breakdown_value(path, value, currency)
    return to_json_safe(value)


def _values_match(path: str, current: Any, claimed: Any) -> bool:
    if path == TOTAL_AMOUNT:
        try:
            return to_decimal(current) == to_decimal(claimed)
        except ValueError:
            return False
    if path == BREAKDOWN:
        try:
            return _breakdown_key(current) == _breakdown_key(claimed)
        except (InvalidAmendmentError, KeyError, TypeError, ValueError):
            return False
    if path == CURRENCY and isinstance(claimed, str) and isinstance(current, str):
        return current.upper() == claimed.strip().upper()
    return to_json_safe(current) == to_json_safe(claimed)


def _breakdown_key(steps: Any) -> list[tuple[int, str, str, Decimal]]:
    if not isinstance(steps, (list, tuple)):
        raise TypeError("breakdown must be a list")
    keyed = []
    for index, step in enumerate(steps):
        if not isinstance(step, CalculationStep):
            step = CalculationStep.from_dict(step, index)
        keyed.append((step.step_number, step.description, str(step.calculation), to_decimal(step.result)))
    return keyed


def normalize_changes(
    changes: Mapping[str, Any],
    snapshot: Mapping[str, Any],
) -> dict[str, dict[str, Any]]:
    """
    Validate a requested change set against the current snapshot.

    Each entry maps a field path to ``{"newValue": ..., "oldValue": ...,
    "reason": ...}``; ``oldValue`` and ``reason`` are optional.  When
    ``oldValue`` is given it must equal the snapshot's current value, so an
    amendment drafted against an outdated view of the record is rejected.

    Returns:
        The JSON-safe change set stored as the amendment's ``new_version``.

    Raises:
        InvalidAmendmentError: naming the offending field path.
    """
    if not isinstance(changes, Mapping) or not changes:
        raise InvalidAmendmentError("changes", "at least one field change is required")

    normalized: dict[str, dict[str, Any]] = {}
    for path, change in changes.items():
        if not isinstance(path, str) or not _is_supported(path):
            raise InvalidAmendmentError(str(path), "field cannot be amended")
        if not isinstance(change, Mapping) or "newValue" not in change:
            raise InvalidAmendmentError(path, "newValue is required")

        entry: dict[str, Any] = {
            "newValue": _normalize_new_value(path, change["newValue"], snapshot),
            "reason": str(change.get("reason") or ""),
        }
        if "oldValue" in change:
            claimed = change["oldValue"]
            current = current_value(snapshot, path)
            if not _values_match(path, current, claimed):
                raise InvalidAmendmentError(
                    path,
                    f"stale oldValue {claimed!r}; current value is {current!r}",
                )
            entry["oldValue"] = to_json_safe(claimed)
        normalized[path] = entry
    return normalized


def derive_changes_summary(
    previous_version: Mapping[str, Any],
    new_version: Mapping[str, Mapping[str, Any]],
) -> tuple[FieldChange, ...]:
    """
    One FieldChange per amended field, ordered by field path.

    ``old_value`` is the submitted ``oldValue`` when present, otherwise the
    value captured in the snapshot.
    """
    summary = []
    for path in sorted(new_version):
        change = new_version[path]
        old = change["oldValue"] if "oldValue" in change else current_value(previous_version, path)
        summary.append(FieldChange(
            field=path,
            old_value=copy.deepcopy(old),
            new_value=copy.deepcopy(change["newValue"]),
            reason=change.get("reason", ""),
        ))
    return tuple(summary)


# =========================================================================
# Applying an approved change set
# =========================================================================


def apply_changes(
    previous_version: Mapping[str, Any],
    new_version: Mapping[str, Mapping[str, Any]],
    amendment_id: str,
    amendment_type: AmendmentType,
    reason: str,
) -> AmendedContent:
    """
    Produce the content of the record that replaces the amended one.

    A submitted ``breakdown`` replaces the original steps outright.
    Otherwise the original steps are kept and one amendment adjustment step
    is appended whose result is the amended total.
    """
    input_data = copy.deepcopy(previous_version.get("inputData") or {})
    final_result = copy.deepcopy(previous_version.get("finalResult") or {})
    compliance = final_result.setdefault("compliance", {})
    previous_total = final_result.get("totalAmount")

    for path, change in new_version.items():
        value = copy.deepcopy(change["newValue"])
        if path == TOTAL_AMOUNT:
            final_result["totalAmount"] = value
        elif path == CURRENCY:
            final_result["currency"] = value
        elif path == METHOD:
            final_result["method"] = value
        elif path == COMPLIANCE_FLAG:
            compliance["compliance"] = value
        elif path == COMPLIANCE_REFERENCE:
            compliance["reference"] = value
        elif path.startswith(INPUT_DATA_PREFIX):
            input_data[path[len(INPUT_DATA_PREFIX):]] = value

    if BREAKDOWN in new_version:
        steps = [snapshot_to_step(s) for s in new_version[BREAKDOWN]["newValue"]]
    else:
        steps = [snapshot_to_step(s) for s in previous_version.get("breakdown") or ()]
        next_number = max((s["step_number"] for s in steps), default=0) + 1
        new_total = final_result["totalAmount"]
        steps.append({
            "step_number": next_number,
            "description": f"Amendment adjustment ({amendment_type.value.lower()}): {reason}",
            "formula": "amended total",
            "input_values": {
                "previousTotal": previous_total,
                "amendedTotal": new_total,
                "amendmentId": amendment_id,
            },
            "calculation": f"{previous_total} -> {new_total}",
            "result": to_decimal(new_total),
            "currency": final_result.get("currency", ""),
            "regulatory_note": f"Amendment {amendment_id}",
        })

    return AmendedContent(
        input_data=input_data,
        final_result=final_result,
        method=final_result.get("method", previous_version.get("methodUsed", "")),
        regulatory_reference=compliance.get("reference") or None,
        steps=steps,
    )
