"""
calc_audit_kernel.services.calculation_store -- Calculation Record Store.

Responsibility:
    Durably and atomically persists a calculation record together with its
    ordered breakdown steps and lineage head, and provides read access by
    id, by company and type, and by reference id.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - A record, all of its breakdown steps and its lineage head are written in
      one transaction.  Either all persist or none do.
    - Validation happens before any write; nothing is issued for a rejected
      payload.
    - calculation_version comes from the shared VersionIssuer; the record
      timestamp is the version's clock component.
    - result_hash covers input data, final result and breakdown; it is
      recomputed and compared on every get_breakdown().
    - Fetched views are deep copies; nothing a caller does to them reaches
      the database.

Failure modes:
    - InvalidCalculationResultError (a ValidationError) on malformed input.
    - PersistenceError if the atomic write cannot complete.  No version is
      considered issued.
    - CalculationNotFoundError on unknown record ids.
    - TamperDetectedError if stored content no longer matches its hash.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from calc_audit_kernel.db.engine import transaction_scope
from calc_audit_kernel.db.types import round_step_result, to_decimal
from calc_audit_kernel.domain.clock import Clock, SystemClock
from calc_audit_kernel.domain.dtos import (
    AmountReconciliation,
    BreakdownStepView,
    CalculationRecordView,
    CalculationResult,
    RecordedCalculation,
)
from calc_audit_kernel.domain.validation import (
    parse_calculation_type,
    require_identifier,
    to_json_safe,
    validate_calculation_result,
)
from calc_audit_kernel.domain.values import (
    CalculationStatus,
    CalculationType,
    is_valid_record_transition,
)
from calc_audit_kernel.domain.versioning import VersionIssuer
from calc_audit_kernel.exceptions import (
    CalculationNotFoundError,
    InvalidCalculationResultError,
    TamperDetectedError,
)
from calc_audit_kernel.logging_config import LogContext, get_logger
from calc_audit_kernel.models.calculation import (
    BreakdownStepModel,
    CalculationLineageModel,
    CalculationRecordModel,
)
from calc_audit_kernel.selectors.calculation_selector import CalculationSelector
from calc_audit_kernel.utils.hashing import hash_calculation

logger = get_logger("services.calculation_store")

DEFAULT_AMOUNT_TOLERANCE = Decimal("0.01")


def persist_record(
    session: Session,
    issuer: VersionIssuer,
    *,
    company_id: str,
    user_id: str,
    calculation_type: CalculationType,
    input_data: dict[str, Any],
    final_result: dict[str, Any],
    method: str,
    regulatory_reference: str | None,
    steps: list[dict[str, Any]],
    reference_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    is_amendment: bool = False,
    amends_record_id: UUID | None = None,
    amendment_id: UUID | None = None,
    notes: str | None = None,
    validated_by: str | None = None,
) -> CalculationRecordModel:
    """
    Add a record, its steps and its lineage head to ``session`` and flush.

    Shared by the store and the amendment manager so that every record,
    original or amended, is built, versioned and hashed the same way.
    The caller owns the transaction.
    """
    issued = issuer.issue()
    record_id = uuid4()

    quantized = [
        {**step, "result": round_step_result(to_decimal(step["result"]))}
        for step in steps
    ]
    result_hash = hash_calculation(input_data, final_result, quantized)

    record = CalculationRecordModel(
        id=record_id,
        company_id=company_id,
        user_id=user_id,
        calculation_type=calculation_type.value,
        calculation_version=issued.version,
        reference_id=reference_id,
        input_data=input_data,
        final_result=final_result,
        calculation_metadata=metadata,
        method_used=method,
        regulatory_reference=regulatory_reference,
        status=CalculationStatus.ACTIVE.value,
        validated_by=validated_by,
        validated_at=issued.timestamp if validated_by is not None else None,
        timestamp=issued.timestamp,
        is_amendment=is_amendment,
        amends_record_id=amends_record_id,
        amendment_id=amendment_id,
        notes=notes or f"Calculation performed using {method} method",
        result_hash=result_hash,
    )
    record.steps = [
        BreakdownStepModel(
            record_id=record_id,
            step_number=step["step_number"],
            description=step["description"],
            formula=step.get("formula"),
            input_values=step.get("input_values") or {},
            calculation=step["calculation"],
            result=step["result"],
            currency=step["currency"],
            regulatory_note=step.get("regulatory_note"),
        )
        for step in quantized
    ]
    session.add(record)
    # The lineage head references the record by bare foreign key.
    session.flush()
    session.add(CalculationLineageModel(
        record_id=record_id,
        active_record_id=record_id,
        approvals=0,
    ))
    session.flush()
    return record


def verify_record_hash(
    record: CalculationRecordView,
    steps: tuple[BreakdownStepView, ...],
) -> None:
    """
    Recompute the content hash of a loaded record.

    Raises:
        TamperDetectedError: If the stored content no longer matches.
    """
    computed = hash_calculation(
        record.input_data,
        record.final_result,
        [step.to_dict() for step in steps],
    )
    if computed != record.result_hash:
        logger.error(
            "calculation_tamper_detected",
            extra={
                "record_id": str(record.id),
                "expected_hash": record.result_hash,
                "computed_hash": computed,
            },
        )
        raise TamperDetectedError(str(record.id), record.result_hash, computed)


class CalculationStore:
    """Append-only store of calculation records and their breakdowns."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        version_issuer: VersionIssuer | None = None,
        amount_tolerance: Decimal = DEFAULT_AMOUNT_TOLERANCE,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._issuer = version_issuer or VersionIssuer(self._clock)
        self._amount_tolerance = amount_tolerance

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def version_issuer(self) -> VersionIssuer:
        return self._issuer

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_calculation(
        self,
        company_id: str,
        user_id: str,
        calculation_type: CalculationType | str,
        input_data: Mapping[str, Any],
        result: CalculationResult | Mapping[str, Any],
        reference_id: str | None = None,
    ) -> RecordedCalculation:
        """
        Persist a calculation result and its breakdown atomically.

        Returns:
            RecordedCalculation with the new record id and its version.

        Raises:
            InvalidCalculationResultError: before any write, naming the field.
            PersistenceError: if the write could not complete.
        """
        company_id = require_identifier(company_id, "company_id")
        user_id = require_identifier(user_id, "user_id")
        ctype = parse_calculation_type(calculation_type)
        if not isinstance(input_data, Mapping):
            raise InvalidCalculationResultError("input_data", "must be a mapping")
        normalized = validate_calculation_result(result)
        stored_input = to_json_safe(dict(input_data))

        with LogContext.bind(company_id=company_id, actor_id=user_id):
            with transaction_scope(self._session_factory, "record_calculation") as session:
                record = persist_record(
                    session,
                    self._issuer,
                    company_id=company_id,
                    user_id=user_id,
                    calculation_type=ctype,
                    input_data=stored_input,
                    final_result=normalized.final_result,
                    method=normalized.method,
                    regulatory_reference=normalized.regulatory_reference,
                    steps=normalized.steps,
                    reference_id=reference_id,
                    metadata=normalized.metadata,
                )
                recorded = RecordedCalculation(
                    record_id=record.id,
                    version=record.calculation_version,
                )

            logger.info(
                "calculation_recorded",
                extra={
                    "record_id": str(recorded.record_id),
                    "version": recorded.version,
                    "calculation_type": ctype.value,
                    "total_amount": normalized.final_result["totalAmount"],
                    "currency": normalized.currency,
                    "step_count": len(normalized.steps),
                },
            )
        return recorded

    def validate_calculation(self, record_id: UUID, validated_by: str) -> bool:
        """
        Sign off a record: set validated_by/validated_at and status ACTIVE.

        Idempotent: an already validated ACTIVE record is left unchanged and
        True is returned.  A SUPERSEDED record cannot be re-activated and
        False is returned.

        Raises:
            CalculationNotFoundError: If the record does not exist.
        """
        validated_by = require_identifier(validated_by, "validated_by")
        with LogContext.bind(record_id=record_id, actor_id=validated_by):
            with transaction_scope(self._session_factory, "validate_calculation") as session:
                record = self._load_record_model(session, record_id, for_update=True)
                status = CalculationStatus(record.status)

                if not is_valid_record_transition(status, CalculationStatus.ACTIVE):
                    logger.warning(
                        "calculation_validation_refused",
                        extra={"record_id": str(record_id), "status": status.value},
                    )
                    return False

                if status == CalculationStatus.ACTIVE and record.validated_at is not None:
                    logger.debug(
                        "calculation_already_validated",
                        extra={"record_id": str(record_id)},
                    )
                    return True

                record.validated_by = validated_by
                record.validated_at = self._clock.now_utc()
                record.status = CalculationStatus.ACTIVE.value
                session.flush()

            logger.info(
                "calculation_validated",
                extra={"record_id": str(record_id), "validated_by": validated_by},
            )
        return True

    def dispute_calculation(self, record_id: UUID, disputed_by: str) -> bool:
        """
        Flag an ACTIVE record as DISPUTED pending review.

        Returns False when the record is SUPERSEDED.  Validating the record
        again returns it to ACTIVE.
        """
        disputed_by = require_identifier(disputed_by, "disputed_by")
        with transaction_scope(self._session_factory, "dispute_calculation") as session:
            record = self._load_record_model(session, record_id, for_update=True)
            status = CalculationStatus(record.status)
            if status == CalculationStatus.DISPUTED:
                return True
            if not is_valid_record_transition(status, CalculationStatus.DISPUTED):
                return False
            record.status = CalculationStatus.DISPUTED.value
            session.flush()

        logger.info(
            "calculation_disputed",
            extra={"record_id": str(record_id), "disputed_by": disputed_by},
        )
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_record(self, record_id: UUID) -> CalculationRecordView:
        with transaction_scope(self._session_factory, "get_record") as session:
            view = CalculationSelector(session).get_record(record_id)
        if view is None:
            raise CalculationNotFoundError(str(record_id))
        return view

    def get_breakdown(
        self,
        record_id: UUID,
    ) -> tuple[CalculationRecordView, tuple[BreakdownStepView, ...]]:
        """
        Return a record and its breakdown steps in step-number order.

        Raises:
            CalculationNotFoundError: If the record does not exist.
            TamperDetectedError: If stored content fails hash verification.
        """
        with transaction_scope(self._session_factory, "get_breakdown") as session:
            selector = CalculationSelector(session)
            record = selector.get_record(record_id)
            if record is None:
                raise CalculationNotFoundError(str(record_id))
            steps = selector.get_steps(record_id)

        verify_record_hash(record, steps)
        return record, steps

    def get_history(
        self,
        company_id: str,
        calculation_type: CalculationType | str,
        reference_id: str | None = None,
    ) -> list[CalculationRecordView]:
        """Records of one type for a company, newest first."""
        ctype = parse_calculation_type(calculation_type)
        with transaction_scope(self._session_factory, "get_history") as session:
            return CalculationSelector(session).history(company_id, ctype, reference_id)

    def get_active_version(self, record_id: UUID) -> CalculationRecordView:
        """
        Follow lineage heads from ``record_id`` to the record currently in force.

        Returns the record itself when no amendment was ever approved for it.
        """
        with transaction_scope(self._session_factory, "get_active_version") as session:
            selector = CalculationSelector(session)
            current = selector.get_record(record_id)
            if current is None:
                raise CalculationNotFoundError(str(record_id))
            visited = {current.id}
            while True:
                head = selector.get_lineage_head(current.id)
                if head is None or head.active_record_id == current.id:
                    return current
                if head.active_record_id in visited:
                    return current
                visited.add(head.active_record_id)
                nxt = selector.get_record(head.active_record_id)
                if nxt is None:
                    return current
                current = nxt

    def reconcile_expected_amount(
        self,
        record_id: UUID,
        expected_amount: Decimal | int | str,
        tolerance: Decimal | None = None,
    ) -> AmountReconciliation:
        """Compare a record's total with an independently expected amount."""
        record = self.get_record(record_id)
        expected = to_decimal(expected_amount)
        tol = to_decimal(tolerance) if tolerance is not None else self._amount_tolerance
        recorded = record.total_amount
        difference = abs(recorded - expected)
        return AmountReconciliation(
            is_valid=difference <= tol,
            expected=expected,
            recorded=recorded,
            difference=difference,
            tolerance=tol,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _load_record_model(
        session: Session,
        record_id: UUID,
        for_update: bool = False,
    ) -> CalculationRecordModel:
        record = session.get(CalculationRecordModel, record_id, with_for_update=for_update or None)
        if record is None:
            raise CalculationNotFoundError(str(record_id))
        return record
