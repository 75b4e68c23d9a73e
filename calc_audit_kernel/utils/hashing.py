"""
Deterministic hashing utilities.

All hashing in the calculation audit kernel must be deterministic and
reproducible.  This module provides the canonical hashing functions used
for calculation result tamper evidence.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize Decimal so 100.0000 and 100 hash identically
        return format(obj.normalize(), "f")
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Decimal, datetime, UUID)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _normalize_amount(value: Any) -> str:
    """Render a step result so that DB round-trips do not change the hash."""
    return format(Decimal(str(value)).normalize(), "f")


def hash_calculation(
    input_data: dict,
    final_result: dict,
    steps: list[dict],
) -> str:
    """
    Compute the tamper-evidence hash for a calculation record.

    Covers the write-once content of a record: the verbatim inputs, the final
    result and every breakdown step in step order.  Step results are
    normalized because Numeric columns may come back with a different
    exponent than they were written with.

    Args:
        input_data: The calculator inputs stored on the record.
        final_result: The final result mapping stored on the record.
        steps: Breakdown steps as dicts with at least ``step_number``,
            ``description``, ``calculation`` and ``result``.

    Returns:
        Hex-encoded SHA-256 hash.
    """
    normalized_steps = [
        {
            "step_number": step["step_number"],
            "description": step["description"],
            "formula": step.get("formula"),
            "input_values": step.get("input_values") or {},
            "calculation": step["calculation"],
            "result": _normalize_amount(step["result"]),
            "currency": step["currency"],
            "regulatory_note": step.get("regulatory_note"),
        }
        for step in sorted(steps, key=lambda s: s["step_number"])
    ]
    return hash_payload({
        "input_data": input_data,
        "final_result": final_result,
        "steps": normalized_steps,
    })
