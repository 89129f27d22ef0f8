"""Exception hierarchy for the back-office core.

Services raise these internally and convert them into structured results at
the request boundary (see :mod:`retail_backoffice.services.results`). Each
exception carries a user-facing ``message`` and a stable ``code`` so callers
can branch without parsing strings.
"""

from __future__ import annotations

from typing import Any


class BackofficeError(Exception):
    """Base exception for all back-office core errors."""

    code = "error"
    default_message = "Operation failed"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class ValidationFailure(BackofficeError, ValueError):
    """Malformed or out-of-range input."""

    code = "validation_failure"
    default_message = "Invalid input"


class NotFound(BackofficeError):
    """A referenced customer, rule or scope does not exist."""

    code = "not_found"
    default_message = "Record not found"


class InsufficientBalance(BackofficeError):
    """A points transaction would drive the available balance negative."""

    code = "insufficient_balance"
    default_message = "Insufficient available points"

    def __init__(
        self,
        message: str | None = None,
        *,
        available: int | None = None,
        requested: int | None = None,
        **context: Any,
    ) -> None:
        self.available = available
        self.requested = requested
        super().__init__(message, available=available, requested=requested, **context)


class ConflictOrRace(BackofficeError):
    """Concurrent issuance collided on the same sequence scope."""

    code = "conflict"
    default_message = "Another request issued a number at the same time, please retry"


class PersistenceFailure(BackofficeError):
    """The underlying datastore operation failed.

    The message is intentionally generic; the original error is kept on
    ``original_error`` for logging only.
    """

    code = "persistence_failure"
    default_message = "Operation failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        original_error: Exception | None = None,
        **context: Any,
    ) -> None:
        self.original_error = original_error
        super().__init__(message, **context)
