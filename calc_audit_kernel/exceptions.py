"""
Typed Exception Hierarchy for the Calculation Audit Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine (web handlers, schedulers, calculators) must react to
failures differently: a malformed payload is shown to the user, a persistence
failure is retried, a state conflict is refreshed and re-reviewed.  Parsing
message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (offending id, field, value)

Example:
    try:
        manager.approve_amendment(amendment_id, reviewer=42)
    except AmendmentNotPendingError as e:
        return {"error": e.code, "amendment_id": e.amendment_id, "status": e.status}
    except PersistenceError:
        retry_later()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CalcAuditError (base)
    |
    +-- ValidationError
    |   +-- InvalidCalculationResultError
    |   +-- InvalidAmendmentError
    |   +-- InvalidCurrencyError
    |   +-- InvalidReportPeriodError
    |   +-- InvalidReportRequestError
    |
    +-- NotFoundError
    |   +-- CalculationNotFoundError
    |   +-- AmendmentNotFoundError
    |   +-- ReportNotFoundError
    |
    +-- PersistenceError
    |   +-- ExportStorageError
    |
    +-- StateConflictError
    |   +-- AmendmentNotPendingError
    |   +-- ConcurrentApprovalError
    |
    +-- UnsupportedFormatError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError
        +-- TamperDetectedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                         | When Raised
--------------|------------------------------|------------------------------------------
Validation    | INVALID_CALCULATION_RESULT   | Missing total/currency, empty breakdown
              | INVALID_AMENDMENT            | Empty changes, unknown field, stale oldValue
              | INVALID_CURRENCY             | Not a valid ISO 4217 code
              | INVALID_REPORT_PERIOD        | Period is not YYYY-MM or YYYY
              | INVALID_REPORT_REQUEST       | Missing company, report type or actor
--------------|------------------------------|------------------------------------------
Not found     | CALCULATION_NOT_FOUND        | Unknown calculation record id
              | AMENDMENT_NOT_FOUND          | Unknown amendment id
              | REPORT_NOT_FOUND             | Unknown summary report id
--------------|------------------------------|------------------------------------------
Persistence   | PERSISTENCE_ERROR            | Atomic write could not complete
              | EXPORT_STORAGE_FAILED        | Artifact sink could not store the export
--------------|------------------------------|------------------------------------------
State         | AMENDMENT_NOT_PENDING        | Approve/reject on a resolved amendment
              | CONCURRENT_APPROVAL          | Another approval won the race
--------------|------------------------------|------------------------------------------
Export        | UNSUPPORTED_FORMAT           | Unknown export format value
--------------|------------------------------|------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION       | Modifying a frozen record/step/report
              | TAMPER_DETECTED              | Stored result no longer matches its hash

===============================================================================
HANDLING PATTERNS
===============================================================================

1. PERSISTENCE ERRORS ARE RETRIABLE AS A WHOLE OPERATION:

    from calc_audit_kernel.services.retry import retry_on_persistence_error

    recorded = retry_on_persistence_error(
        lambda: store.record_calculation(...),
    )

   Never assume a version was issued when PersistenceError is raised.

2. STATE CONFLICTS ARE NOT RETRIABLE BLINDLY:

    Reload the amendment; it was resolved by someone else.

3. TAMPER DETECTION IS AN INCIDENT:

    except TamperDetectedError as e:
        alert_security_team(e.record_id)
"""


class CalcAuditError(Exception):
    """
    Base exception for all calculation audit errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CALC_AUDIT_ERROR"


# Validation exceptions


class ValidationError(CalcAuditError):
    """Base exception for malformed input rejected before any write."""

    code: str = "VALIDATION_ERROR"


class InvalidCalculationResultError(ValidationError):
    """A CalculationResult payload is malformed or incomplete."""

    code: str = "INVALID_CALCULATION_RESULT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid calculation result field '{field}': {reason}")


class InvalidAmendmentError(ValidationError):
    """An amendment request payload is malformed or stale."""

    code: str = "INVALID_AMENDMENT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid amendment field '{field}': {reason}")


class InvalidCurrencyError(ValidationError):
    """Currency code is not a valid ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


class InvalidReportPeriodError(ValidationError):
    """Report period is not YYYY-MM or YYYY."""

    code: str = "INVALID_REPORT_PERIOD"

    def __init__(self, report_period: str):
        self.report_period = report_period
        super().__init__(
            f"Invalid report period '{report_period}': expected YYYY-MM or YYYY"
        )


class InvalidReportRequestError(ValidationError):
    """Report trigger is missing a required parameter."""

    code: str = "INVALID_REPORT_REQUEST"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid report request field '{field}': {reason}")


# Not-found exceptions


class NotFoundError(CalcAuditError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class CalculationNotFoundError(NotFoundError):
    """Calculation record with given ID was not found."""

    code: str = "CALCULATION_NOT_FOUND"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Calculation record not found: {record_id}")


class AmendmentNotFoundError(NotFoundError):
    """Amendment with given ID was not found."""

    code: str = "AMENDMENT_NOT_FOUND"

    def __init__(self, amendment_id: str):
        self.amendment_id = amendment_id
        super().__init__(f"Amendment not found: {amendment_id}")


class ReportNotFoundError(NotFoundError):
    """Summary report with given ID was not found."""

    code: str = "REPORT_NOT_FOUND"

    def __init__(self, report_id: str):
        self.report_id = report_id
        super().__init__(f"Summary report not found: {report_id}")


# Persistence exceptions


class PersistenceError(CalcAuditError):
    """
    An atomic write could not complete.

    The whole operation was rolled back.  Callers must retry the entire
    operation and never assume partial success.
    """

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence failure during {operation}: {reason}")


class ExportStorageError(PersistenceError):
    """The artifact sink could not store a rendered export."""

    code: str = "EXPORT_STORAGE_FAILED"

    def __init__(self, file_name: str, reason: str):
        self.file_name = file_name
        super().__init__(operation="export", reason=f"{file_name}: {reason}")


# State conflict exceptions


class StateConflictError(CalcAuditError):
    """Base exception for lifecycle conflicts."""

    code: str = "STATE_CONFLICT"


class AmendmentNotPendingError(StateConflictError):
    """Approve or reject attempted on an amendment that is not PENDING."""

    code: str = "AMENDMENT_NOT_PENDING"

    def __init__(self, amendment_id: str, status: str):
        self.amendment_id = amendment_id
        self.status = status
        super().__init__(
            f"Amendment {amendment_id} is {status}; only PENDING amendments "
            "can be approved or rejected"
        )


class ConcurrentApprovalError(StateConflictError):
    """
    Another transaction approved an amendment for the same original first.

    Raised when the optimistic version check on the lineage head (or on the
    amendment row itself) fails at flush time.
    """

    code: str = "CONCURRENT_APPROVAL"

    def __init__(self, original_record_id: str, amendment_id: str | None = None):
        self.original_record_id = original_record_id
        self.amendment_id = amendment_id
        super().__init__(
            f"Concurrent approval detected for calculation {original_record_id}"
            + (f" (amendment {amendment_id})" if amendment_id else "")
        )


# Export exceptions


class UnsupportedFormatError(CalcAuditError):
    """Export format value is not supported."""

    code: str = "UNSUPPORTED_FORMAT"

    def __init__(self, export_format: str, supported: tuple[str, ...] = ()):
        self.export_format = export_format
        self.supported = supported
        message = f"Export format '{export_format}' is not supported"
        if supported:
            message += f" (supported: {', '.join(supported)})"
        super().__init__(message)


# Immutability exceptions


class ImmutabilityError(CalcAuditError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class TamperDetectedError(ImmutabilityError):
    """Stored calculation content no longer matches its write-time hash."""

    code: str = "TAMPER_DETECTED"

    def __init__(self, record_id: str, expected_hash: str, computed_hash: str):
        self.record_id = record_id
        self.expected_hash = expected_hash
        self.computed_hash = computed_hash
        super().__init__(
            f"Tamper detected on calculation {record_id}: "
            f"expected {expected_hash}, computed {computed_hash}"
        )
