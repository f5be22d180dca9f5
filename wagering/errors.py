from typing import Any, Optional


class WageringError(Exception):
    kind = "internal_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(WageringError):
    kind = "not_found"


class ForbiddenError(WageringError):
    kind = "forbidden"


class InvalidStateError(WageringError):
    kind = "invalid_state"


class InsufficientFundsError(WageringError):
    kind = "insufficient_funds"


class InvalidWinnerError(WageringError):
    kind = "invalid_winner"


class InvalidInputError(WageringError):
    kind = "validation_error"


class IdempotencyConflictError(WageringError):
    kind = "idempotency_conflict"


class PersistenceError(WageringError):
    """Raised when the store fails mid-transition; state is rolled back first."""
