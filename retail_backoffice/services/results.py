"""Structured results returned across the service boundary.

Services raise :mod:`retail_backoffice.errors` exceptions internally; the
public entry points catch them and hand back one of these models so callers
never need a try/except to learn why an action failed.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from retail_backoffice.errors import BackofficeError


class ActionResult(BaseModel):
    """Outcome of a mutating back-office action."""

    success: bool
    message: str
    error_code: str | None = Field(
        default=None, description="Stable error code when success is False"
    )

    @classmethod
    def from_error(cls, error: BackofficeError, **fields) -> "ActionResult":
        """Build a failed result carrying the error's user-facing message."""
        return cls(success=False, message=error.message, error_code=error.code, **fields)


class PointsAdjustmentResult(ActionResult):
    """Result of a points ledger transaction."""

    available_points: int | None = None  # balance after the transaction
    total_points: int | None = None  # lifetime earned points after the transaction


class NumberIssueResult(ActionResult):
    """Result of issuing a document number."""

    number: str | None = None
