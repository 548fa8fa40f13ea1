"""
Typed exception hierarchy for the billing engine.

Every error carries a machine-readable ``code`` class attribute and the
identifiers it concerns, so callers catch by type and report by code rather
than parsing messages.

    BillGuardError
    +-- UnauthorizedError
    +-- NotFoundError
    |   +-- CycleNotFoundError
    |   +-- BillNotFoundError
    +-- CycleNotActiveError
    +-- CycleAlreadyEndedError
    +-- CycleNotEndedError
    +-- BillAlreadyPaidError
    +-- BillNotDueYetError
    +-- AdjustmentLimitReachedError
    +-- ValidationError
    |   +-- InvalidDurationError
    |   +-- InvalidAmountError
    |   +-- InvalidDueDateError
    |   +-- InvalidLeadTimeError
    |   +-- InvalidRecurrenceError
    |   +-- InvalidBatchError
    +-- AllocationExceededError
    +-- TransferFailedError

Validation errors are always raised before any state is written.
"""

from typing import Optional


class BillGuardError(Exception):
    """Base exception for all billing engine errors."""

    code: str = "BILL_GUARD_ERROR"


class UnauthorizedError(BillGuardError):
    """Caller is not allowed to perform an owner-only or admin-only operation."""

    code: str = "UNAUTHORIZED"

    def __init__(self, caller: str, operation: str):
        self.caller = caller
        self.operation = operation
        super().__init__(f"{caller} is not authorized to {operation}")


class NotFoundError(BillGuardError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class CycleNotFoundError(NotFoundError):
    code: str = "CYCLE_NOT_FOUND"

    def __init__(self, cycle_id: int):
        self.cycle_id = cycle_id
        super().__init__(f"Cycle not found: {cycle_id}")


class BillNotFoundError(NotFoundError):
    code: str = "BILL_NOT_FOUND"

    def __init__(self, bill_id: int):
        self.bill_id = bill_id
        super().__init__(f"Bill not found: {bill_id}")


class CycleNotActiveError(BillGuardError):
    """Operation requires an active cycle but the cycle has ended."""

    code: str = "CYCLE_NOT_ACTIVE"

    def __init__(self, cycle_id: int):
        self.cycle_id = cycle_id
        super().__init__(f"Cycle {cycle_id} is not active")


class CycleAlreadyEndedError(BillGuardError):
    code: str = "CYCLE_ALREADY_ENDED"

    def __init__(self, cycle_id: int):
        self.cycle_id = cycle_id
        super().__init__(f"Cycle {cycle_id} has already ended")


class CycleNotEndedError(BillGuardError):
    """Owner tried to close a cycle before its end date."""

    code: str = "CYCLE_NOT_ENDED"

    def __init__(self, cycle_id: int, end_date: int):
        self.cycle_id = cycle_id
        self.end_date = end_date
        super().__init__(f"Cycle {cycle_id} does not end until {end_date}")


class BillAlreadyPaidError(BillGuardError):
    code: str = "BILL_ALREADY_PAID"

    def __init__(self, bill_id: int):
        self.bill_id = bill_id
        super().__init__(f"Bill {bill_id} is already paid")


class BillNotDueYetError(BillGuardError):
    """Owner payment attempted on a day other than the due day."""

    code: str = "BILL_NOT_DUE_YET"

    def __init__(self, bill_id: int, due_date: int):
        self.bill_id = bill_id
        self.due_date = due_date
        super().__init__(f"Bill {bill_id} can only be paid on its due day ({due_date})")


class AdjustmentLimitReachedError(BillGuardError):
    """Only one bill adjustment per month is allowed for a cycle."""

    code: str = "ADJUSTMENT_LIMIT_REACHED"

    def __init__(self, cycle_id: int, month: int):
        self.cycle_id = cycle_id
        self.month = month
        super().__init__(f"Cycle {cycle_id} already made an adjustment in month {month}")


class ValidationError(BillGuardError):
    """Base exception for malformed input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, value: Optional[object] = None):
        self.value = value
        super().__init__(message)


class InvalidDurationError(ValidationError):
    code: str = "INVALID_DURATION"


class InvalidAmountError(ValidationError):
    code: str = "INVALID_AMOUNT"


class InvalidDueDateError(ValidationError):
    code: str = "INVALID_DUE_DATE"


class InvalidLeadTimeError(ValidationError):
    code: str = "INVALID_LEAD_TIME"


class InvalidRecurrenceError(ValidationError):
    code: str = "INVALID_RECURRENCE"


class InvalidBatchError(ValidationError):
    code: str = "INVALID_BATCH"


class AllocationExceededError(BillGuardError):
    """Proposed bills would allocate more than the cycle's available funds."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, cycle_id: int, available: int, requested: int):
        self.cycle_id = cycle_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Cycle {cycle_id} allocation of {requested} exceeds available {available}"
        )


class TransferFailedError(BillGuardError):
    """The underlying funds movement failed; the operation had no effect."""

    code: str = "TRANSFER_FAILED"

    def __init__(self, source: str, destination: str, amount: int, reason: str):
        self.source = source
        self.destination = destination
        self.amount = amount
        self.reason = reason
        super().__init__(f"Transfer of {amount} from {source} to {destination} failed: {reason}")
