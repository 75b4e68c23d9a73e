"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A tax audit must be able to show what was originally calculated and what was
later corrected, by whom and why.  Calculation records therefore behave like
ledger entries: their content is written once and corrections arrive as new
records produced by an approved amendment.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
The listeners below intercept those events and raise
ImmutabilityViolationError, so the flush aborts and the transaction rolls
back before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Raw SQL bypasses these listeners.  That path is covered on read by the
result hash that the record store verifies on every get_breakdown().

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|------------------------------------------------------
CalculationRecord   | Only status/validated_by/validated_at may change;
                    | status moves only along RECORD_STATUS_TRANSITIONS;
                    | never deleted
BreakdownStep       | ALWAYS immutable, never deleted
AmendmentRecord     | Payload columns write-once; REJECTED and SUPERSEDED
                    | are frozen; APPROVED may only become SUPERSEDED;
                    | never deleted
CalculationLineage  | Never deleted (the head itself advances)

Summary reports live in the reporting package, which registers its own
listeners next to its model (only export metadata may change there).

===============================================================================
USAGE
===============================================================================

Called automatically by init_engine_from_url():

    from calc_audit_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY - never in production):

    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from calc_audit_kernel.exceptions import ImmutabilityViolationError
from calc_audit_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, entity_id, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def changed_columns(target) -> set[str]:
    """Names of column attributes with pending changes on ``target``."""
    state = inspect(target)
    changed = set()
    for attr in state.mapper.column_attrs:
        if state.attrs[attr.key].history.has_changes():
            changed.add(attr.key)
    return changed


def _previous_value(target, key: str):
    history = get_history(target, key)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def _check_calculation_record_immutability(mapper, connection, target):
    """
    Block edits to frozen record columns and invalid status moves.

    input_data, final_result, breakdown and identity columns are write-once.
    Validation sign-off and status are the only mutable parts.
    """
    from calc_audit_kernel.domain.values import (
        CalculationStatus,
        is_valid_record_transition,
    )
    from calc_audit_kernel.models.calculation import MUTABLE_RECORD_COLUMNS

    frozen = changed_columns(target) - MUTABLE_RECORD_COLUMNS
    if frozen:
        _block(
            "CalculationRecord", target.id, "UPDATE",
            f"Calculation records are immutable; attempted to modify {sorted(frozen)}",
        )

    history = get_history(target, "status")
    if history.deleted and history.added:
        old = CalculationStatus(history.deleted[0])
        new = CalculationStatus(history.added[0])
        if not is_valid_record_transition(old, new):
            _block(
                "CalculationRecord", target.id, "UPDATE",
                f"Invalid status transition {old.value} -> {new.value}",
            )


def _check_calculation_record_delete(mapper, connection, target):
    _block(
        "CalculationRecord", target.id, "DELETE",
        "Calculation records are append-only and cannot be deleted",
    )


def _check_breakdown_step_immutability(mapper, connection, target):
    _block(
        "BreakdownStep", target.id, "UPDATE",
        "Breakdown steps are immutable -- cannot modify",
    )


def _check_breakdown_step_delete(mapper, connection, target):
    _block(
        "BreakdownStep", target.id, "DELETE",
        "Breakdown steps are immutable -- cannot delete",
    )


def _check_amendment_immutability(mapper, connection, target):
    """
    Enforce the amendment lifecycle at the ORM level.

    Logic:
        1. Payload columns (snapshot, change set, summary, reason...) never change.
        2. REJECTED and SUPERSEDED rows never change.
        3. An APPROVED row may only move to SUPERSEDED (system supersession).
        4. A PENDING row may move to APPROVED or REJECTED.
    """
    from calc_audit_kernel.domain.values import (
        AmendmentStatus,
        TERMINAL_AMENDMENT_STATUSES,
        is_valid_amendment_transition,
    )
    from calc_audit_kernel.models.amendment import MUTABLE_AMENDMENT_COLUMNS

    changed = changed_columns(target)
    frozen = changed - MUTABLE_AMENDMENT_COLUMNS
    if frozen:
        _block(
            "AmendmentRecord", target.id, "UPDATE",
            f"Amendment payload is immutable; attempted to modify {sorted(frozen)}",
        )

    old = AmendmentStatus(_previous_value(target, "status"))
    status_history = get_history(target, "status")
    new = AmendmentStatus(status_history.added[0]) if status_history.added else old

    if old in TERMINAL_AMENDMENT_STATUSES:
        _block(
            "AmendmentRecord", target.id, "UPDATE",
            f"Amendment is {old.value} and can no longer change",
        )
    if new != old and not is_valid_amendment_transition(old, new):
        _block(
            "AmendmentRecord", target.id, "UPDATE",
            f"Invalid amendment transition {old.value} -> {new.value}",
        )
    if old == AmendmentStatus.APPROVED:
        allowed = {"status", "superseded_at", "version_id"}
        if new != AmendmentStatus.SUPERSEDED or changed - allowed:
            _block(
                "AmendmentRecord", target.id, "UPDATE",
                "Approved amendments can only be superseded",
            )


def _check_amendment_delete(mapper, connection, target):
    _block(
        "AmendmentRecord", target.id, "DELETE",
        "Amendments are audit records and cannot be deleted",
    )


def _check_lineage_delete(mapper, connection, target):
    _block(
        "CalculationLineage", target.id, "DELETE",
        "Lineage heads cannot be deleted",
    )


def _listeners():
    from calc_audit_kernel.models.amendment import AmendmentRecordModel
    from calc_audit_kernel.models.calculation import (
        BreakdownStepModel,
        CalculationLineageModel,
        CalculationRecordModel,
    )

    return (
        (CalculationRecordModel, "before_update", _check_calculation_record_immutability),
        (CalculationRecordModel, "before_delete", _check_calculation_record_delete),
        (BreakdownStepModel, "before_update", _check_breakdown_step_immutability),
        (BreakdownStepModel, "before_delete", _check_breakdown_step_delete),
        (AmendmentRecordModel, "before_update", _check_amendment_immutability),
        (AmendmentRecordModel, "before_delete", _check_amendment_delete),
        (CalculationLineageModel, "before_delete", _check_lineage_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: a listener already registered is not registered twice.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)


def immutability_listeners_registered() -> bool:
    return all(
        event.contains(target, event_name, listener_fn)
        for target, event_name, listener_fn in _listeners()
    )
