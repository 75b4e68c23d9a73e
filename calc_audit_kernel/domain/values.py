"""
Calculation audit value types (``calc_audit_kernel.domain.values``).

Responsibility
--------------
Enumerations shared by the record store, the amendment manager and the
reporting package, plus the amendment lifecycle state machine.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``AMENDMENT_TRANSITIONS`` defines the only valid amendment status
  transitions.  REJECTED and SUPERSEDED have no outgoing edges; the only
  edge out of APPROVED is the system-driven supersede.
* Record status changes are limited to ``RECORD_STATUS_TRANSITIONS``.
"""

from __future__ import annotations

from enum import Enum


class CalculationType(str, Enum):
    """Kind of tax computation a record captures."""

    VAT = "VAT"
    CIT = "CIT"
    TRANSFER_PRICING = "TRANSFER_PRICING"
    DMTT = "DMTT"
    PENALTY = "PENALTY"
    OTHER = "OTHER"


class CalculationStatus(str, Enum):
    """Calculation record status; the only mutable part of a record."""

    ACTIVE = "ACTIVE"
    SUPERSEDED = "SUPERSEDED"
    DISPUTED = "DISPUTED"


RECORD_STATUS_TRANSITIONS: dict[CalculationStatus, frozenset[CalculationStatus]] = {
    CalculationStatus.ACTIVE: frozenset({
        CalculationStatus.SUPERSEDED,
        CalculationStatus.DISPUTED,
    }),
    CalculationStatus.DISPUTED: frozenset({
        CalculationStatus.ACTIVE,
        CalculationStatus.SUPERSEDED,
    }),
    CalculationStatus.SUPERSEDED: frozenset(),
}


class AmendmentType(str, Enum):
    """What kind of change an amendment proposes."""

    CORRECTION = "CORRECTION"
    RECLASSIFICATION = "RECLASSIFICATION"
    WITHDRAWAL = "WITHDRAWAL"


class AmendmentStatus(str, Enum):
    """Amendment lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUPERSEDED = "SUPERSEDED"


AMENDMENT_TRANSITIONS: dict[AmendmentStatus, frozenset[AmendmentStatus]] = {
    AmendmentStatus.PENDING: frozenset({
        AmendmentStatus.APPROVED,
        AmendmentStatus.REJECTED,
    }),
    AmendmentStatus.APPROVED: frozenset({AmendmentStatus.SUPERSEDED}),
    AmendmentStatus.REJECTED: frozenset(),
    AmendmentStatus.SUPERSEDED: frozenset(),
}

TERMINAL_AMENDMENT_STATUSES: frozenset[AmendmentStatus] = frozenset({
    AmendmentStatus.REJECTED,
    AmendmentStatus.SUPERSEDED,
})


class AmendmentUrgency(str, Enum):
    """
    Priority hint for the human review queue.

    Recorded on the amendment only.  It never changes the initial status:
    every amendment starts PENDING, CRITICAL included.
    """

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


def is_valid_amendment_transition(
    current: AmendmentStatus,
    target: AmendmentStatus,
) -> bool:
    """Return True if ``current -> target`` is an allowed amendment transition."""
    return target in AMENDMENT_TRANSITIONS.get(current, frozenset())


def is_valid_record_transition(
    current: CalculationStatus,
    target: CalculationStatus,
) -> bool:
    """Return True if ``current -> target`` is an allowed record status change."""
    if current == target:
        return True
    return target in RECORD_STATUS_TRANSITIONS.get(current, frozenset())
