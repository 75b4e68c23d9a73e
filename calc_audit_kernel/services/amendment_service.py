"""
calc_audit_kernel.services.amendment_service -- Versioning & Amendment Manager.

Responsibility:
    Manages the amendment lifecycle: creation (always PENDING), approval
    (creates the replacement record and supersedes the prior approval),
    rejection, and read access.  Never mutates an original record.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.
    Shares the record store's session factory and version issuer so amended
    records are versioned in the same sequence as originals.

Invariants enforced:
    - Lifecycle: PENDING -> APPROVED | REJECTED by reviewers; APPROVED ->
      SUPERSEDED only when a later amendment for the same original is
      approved.
    - At most one APPROVED amendment per original.  Approvals advance the
      original's lineage head, whose optimistic version (plus SELECT ... FOR
      UPDATE on PostgreSQL) serializes concurrent approvals.
    - Approval is all-or-nothing: status flip, supersession, new record and
      lineage advance commit together or not at all.
    - The changes summary is re-derivable from previous_version/new_version.

Failure modes:
    - CalculationNotFoundError if the original record does not exist.
    - InvalidAmendmentError on malformed or stale change sets.
    - AmendmentNotFoundError on unknown amendment ids.
    - AmendmentNotPendingError when approving/rejecting a resolved amendment.
    - ConcurrentApprovalError when another approval won the race.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from calc_audit_kernel.db.engine import transaction_scope
from calc_audit_kernel.domain.amendment import (
    apply_changes,
    build_snapshot,
    derive_changes_summary,
    normalize_changes,
)
from calc_audit_kernel.domain.clock import Clock
from calc_audit_kernel.domain.dtos import AmendmentView, FieldChange
from calc_audit_kernel.domain.values import (
    AmendmentStatus,
    AmendmentType,
    AmendmentUrgency,
    CalculationStatus,
    CalculationType,
)
from calc_audit_kernel.exceptions import (
    AmendmentNotFoundError,
    AmendmentNotPendingError,
    CalculationNotFoundError,
    ConcurrentApprovalError,
    InvalidAmendmentError,
)
from calc_audit_kernel.logging_config import LogContext, get_logger
from calc_audit_kernel.models.amendment import AmendmentRecordModel
from calc_audit_kernel.models.calculation import (
    CalculationLineageModel,
    CalculationRecordModel,
)
from calc_audit_kernel.selectors.calculation_selector import AmendmentSelector
from calc_audit_kernel.services.calculation_store import CalculationStore, persist_record

logger = get_logger("services.amendment_service")


def _parse_enum(enum_cls: type[Enum], value: Any, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidAmendmentError(field, f"unknown value {value!r} (expected one of {allowed})") from None


def _require_text(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidAmendmentError(field, "is required")
    return str(value)


class AmendmentService:
    """Manages the amendment lifecycle for calculation records."""

    def __init__(
        self,
        store: CalculationStore,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._session_factory = store.session_factory
        self._issuer = store.version_issuer
        self._clock = clock or store.clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_amendment(
        self,
        original_id: UUID,
        record_type: str,
        amendment_type: AmendmentType | str,
        changes: Mapping[str, Mapping[str, Any]],
        reason: str,
        requested_by: str,
        urgency: AmendmentUrgency | str = AmendmentUrgency.MEDIUM,
        supporting_documents: Iterable[str] = (),
        regulatory_deadline: datetime | None = None,
    ) -> UUID:
        """
        Create a PENDING amendment against an existing record.

        Urgency is recorded for the review queue only; a CRITICAL amendment
        starts PENDING like any other.

        Raises:
            CalculationNotFoundError: If the original record does not exist.
            InvalidAmendmentError: On malformed or stale changes.
        """
        record_type = _require_text(record_type, "record_type")
        atype = _parse_enum(AmendmentType, amendment_type, "amendment_type")
        level = _parse_enum(AmendmentUrgency, urgency, "urgency")
        reason = _require_text(reason, "reason")
        requested_by = _require_text(requested_by, "requested_by")
        if regulatory_deadline is not None and regulatory_deadline.tzinfo is None:
            raise InvalidAmendmentError("regulatory_deadline", "must be timezone-aware")
        documents = [str(doc) for doc in supporting_documents or ()]

        with LogContext.bind(record_id=original_id, actor_id=requested_by):
            with transaction_scope(self._session_factory, "create_amendment") as session:
                original = session.get(CalculationRecordModel, original_id)
                if original is None:
                    raise CalculationNotFoundError(str(original_id))

                snapshot = build_snapshot(
                    original.to_dto(),
                    tuple(step.to_dto() for step in original.steps),
                )
                new_version = normalize_changes(changes, snapshot)
                summary = derive_changes_summary(snapshot, new_version)

                amendment = AmendmentRecordModel(
                    id=uuid4(),
                    original_record_id=original.id,
                    record_type=record_type,
                    amendment_type=atype.value,
                    previous_version=snapshot,
                    new_version=new_version,
                    changes_summary=[change.to_dict() for change in summary],
                    reason=reason,
                    amended_by=requested_by,
                    status=AmendmentStatus.PENDING.value,
                    urgency=level.value,
                    supporting_documents=documents,
                    regulatory_deadline=regulatory_deadline,
                    amended_at=self._clock.now_utc(),
                )
                session.add(amendment)
                session.flush()
                amendment_id = amendment.id

            logger.info(
                "amendment_created",
                extra={
                    "amendment_id": str(amendment_id),
                    "amendment_type": atype.value,
                    "urgency": level.value,
                    "fields": sorted(new_version),
                },
            )
        return amendment_id

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def approve_amendment(self, amendment_id: UUID, reviewer: str) -> UUID:
        """
        Approve a PENDING amendment and create the replacement record.

        In one transaction: supersedes the prior approved amendment for the
        same original (and its resulting record), creates the new record
        with the changes applied, marks this amendment APPROVED and advances
        the original's lineage head.  The original record is not touched.

        Returns:
            Id of the newly created record.

        Raises:
            AmendmentNotFoundError, AmendmentNotPendingError,
            ConcurrentApprovalError.
        """
        reviewer = _require_text(reviewer, "reviewer")
        with LogContext.bind(amendment_id=amendment_id, actor_id=reviewer):
            with transaction_scope(self._session_factory, "approve_amendment") as session:
                amendment = self._load_amendment_model(session, amendment_id, for_update=True)
                self._require_pending(amendment)
                original_id = amendment.original_record_id

                head = self._load_lineage_head(session, original_id)
                original = session.get(CalculationRecordModel, original_id)
                if original is None:
                    raise CalculationNotFoundError(str(original_id))
                now = self._clock.now_utc()
                content = apply_changes(
                    amendment.previous_version,
                    amendment.new_version,
                    str(amendment.id),
                    AmendmentType(amendment.amendment_type),
                    amendment.reason,
                )

                # Any flush below can hit a row another approval already moved.
                try:
                    superseded_id = self._supersede_prior(session, head, now)
                    new_record = persist_record(
                        session,
                        self._issuer,
                        company_id=original.company_id,
                        user_id=amendment.amended_by,
                        calculation_type=CalculationType(original.calculation_type),
                        input_data=content.input_data,
                        final_result=content.final_result,
                        method=content.method,
                        regulatory_reference=content.regulatory_reference,
                        steps=content.steps,
                        reference_id=original.reference_id,
                        metadata=original.calculation_metadata,
                        is_amendment=True,
                        amends_record_id=original.id,
                        amendment_id=amendment.id,
                        notes=(
                            f"Amendment of calculation {original.calculation_version}: "
                            f"{amendment.reason}"
                        ),
                        validated_by=reviewer,
                    )

                    amendment.status = AmendmentStatus.APPROVED.value
                    amendment.reviewed_by = reviewer
                    amendment.reviewed_at = now
                    amendment.resulting_record_id = new_record.id

                    head.active_amendment_id = amendment.id
                    head.active_record_id = new_record.id
                    head.approvals = (head.approvals or 0) + 1
                    head.updated_at = now
                    session.flush()
                except StaleDataError as exc:
                    logger.warning(
                        "amendment_approval_conflict",
                        extra={
                            "amendment_id": str(amendment_id),
                            "original_record_id": str(original_id),
                        },
                    )
                    raise ConcurrentApprovalError(str(original_id), str(amendment_id)) from exc

                new_record_id = new_record.id

            logger.info(
                "amendment_approved",
                extra={
                    "amendment_id": str(amendment_id),
                    "original_record_id": str(original_id),
                    "new_record_id": str(new_record_id),
                    "superseded_amendment_id": str(superseded_id) if superseded_id else None,
                },
            )
        return new_record_id

    def reject_amendment(self, amendment_id: UUID, reviewer: str, note: str) -> bool:
        """
        Reject a PENDING amendment.  No record is created.

        Raises:
            AmendmentNotFoundError, AmendmentNotPendingError,
            ConcurrentApprovalError.
        """
        reviewer = _require_text(reviewer, "reviewer")
        with LogContext.bind(amendment_id=amendment_id, actor_id=reviewer):
            with transaction_scope(self._session_factory, "reject_amendment") as session:
                amendment = self._load_amendment_model(session, amendment_id, for_update=True)
                self._require_pending(amendment)

                amendment.status = AmendmentStatus.REJECTED.value
                amendment.reviewed_by = reviewer
                amendment.reviewed_at = self._clock.now_utc()
                amendment.review_note = note or ""
                try:
                    session.flush()
                except StaleDataError as exc:
                    raise ConcurrentApprovalError(
                        str(amendment.original_record_id), str(amendment_id),
                    ) from exc

            logger.info(
                "amendment_rejected",
                extra={"amendment_id": str(amendment_id), "reviewer": reviewer},
            )
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_amendment(self, amendment_id: UUID) -> AmendmentView:
        with transaction_scope(self._session_factory, "get_amendment") as session:
            view = AmendmentSelector(session).get(amendment_id)
        if view is None:
            raise AmendmentNotFoundError(str(amendment_id))
        return view

    def list_amendments(self, original_id: UUID) -> list[AmendmentView]:
        """All amendments raised against a record, oldest first."""
        with transaction_scope(self._session_factory, "list_amendments") as session:
            if session.get(CalculationRecordModel, original_id) is None:
                raise CalculationNotFoundError(str(original_id))
            return AmendmentSelector(session).for_original(original_id)

    @staticmethod
    def derive_changes_summary(
        previous_version: Mapping[str, Any],
        new_version: Mapping[str, Mapping[str, Any]],
    ) -> tuple[FieldChange, ...]:
        """Rebuild a changes summary from an amendment's stored payload."""
        return derive_changes_summary(previous_version, new_version)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _load_amendment_model(
        session: Session,
        amendment_id: UUID,
        for_update: bool = False,
    ) -> AmendmentRecordModel:
        model = session.get(AmendmentRecordModel, amendment_id, with_for_update=for_update or None)
        if model is None:
            raise AmendmentNotFoundError(str(amendment_id))
        return model

    @staticmethod
    def _require_pending(amendment: AmendmentRecordModel) -> None:
        if amendment.status != AmendmentStatus.PENDING.value:
            raise AmendmentNotPendingError(str(amendment.id), amendment.status)

    @staticmethod
    def _load_lineage_head(session: Session, record_id: UUID) -> CalculationLineageModel:
        head = session.scalars(
            select(CalculationLineageModel)
            .where(CalculationLineageModel.record_id == record_id)
            .with_for_update()
        ).one_or_none()
        if head is None:
            # Records written before lineage heads existed get one lazily.
            head = CalculationLineageModel(
                record_id=record_id,
                active_record_id=record_id,
                approvals=0,
            )
            session.add(head)
        return head

    @staticmethod
    def _supersede_prior(
        session: Session,
        head: CalculationLineageModel,
        now: datetime,
    ) -> UUID | None:
        """Move the currently active approval (if any) to SUPERSEDED."""
        if head.active_amendment_id is None:
            return None
        prior = session.get(AmendmentRecordModel, head.active_amendment_id)
        if prior is None or prior.status != AmendmentStatus.APPROVED.value:
            return None

        prior.status = AmendmentStatus.SUPERSEDED.value
        prior.superseded_at = now
        if prior.resulting_record_id is not None:
            prior_record = session.get(CalculationRecordModel, prior.resulting_record_id)
            if (
                prior_record is not None
                and prior_record.status != CalculationStatus.SUPERSEDED.value
            ):
                prior_record.status = CalculationStatus.SUPERSEDED.value
        logger.info(
            "amendment_superseded",
            extra={"amendment_id": str(prior.id)},
        )
        return prior.id
