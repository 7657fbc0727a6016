"""Return workflow error taxonomy.

Every failure a caller can see carries a stable reason code so the operator
UI can explain *why* an action was refused instead of "operation failed".
"""

from __future__ import annotations

from typing import Optional


class ReturnError(Exception):
    """Base class for all return workflow errors."""

    code = "ReturnError"
    retryable = False

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "field": self.field,
            "retryable": self.retryable,
        }


class NotFoundError(ReturnError):
    code = "NotFound"


class InvalidTransitionError(ReturnError):
    code = "InvalidTransition"


class TerminalStateError(ReturnError):
    code = "TerminalState"


class MissingRefundAmountError(ReturnError):
    code = "MissingRefundAmount"

    def __init__(self, message: str = "Refund amount is required to complete a return"):
        super().__init__(message, field="refund_amount")


class ValidationError(ReturnError):
    code = "ValidationError"

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}", field=field)
        self.reason = reason


class ConflictError(ReturnError):
    """Optimistic-concurrency conflict; reload and re-evaluate."""
    code = "Conflict"
    retryable = True


class SlotNoLongerAvailableError(ReturnError):
    """The chosen pickup slot was taken; re-query and let the operator re-select."""
    code = "SlotNoLongerAvailable"
    retryable = True

    def __init__(self, message: str = "Pickup slot is no longer available"):
        super().__init__(message, field="time_slot")


class ProviderUnavailableError(ReturnError):
    """Courier provider could not be reached or timed out."""
    code = "ProviderUnavailable"
    retryable = True
