"""Customer loyalty points ledger.

Each transaction changes a customer's spendable ``available_points`` (and,
for EARN, the lifetime ``total_points``) and appends one ledger entry in the
same database transaction. The balance check and the mutation are a single
conditional UPDATE, so two concurrent redemptions can never both spend the
same points.
"""

from __future__ import annotations

from enum import Enum

import structlog
from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from retail_backoffice.db.models import Customer, PointsLedgerEntry
from retail_backoffice.db.session import Datastore
from retail_backoffice.errors import (
    BackofficeError,
    InsufficientBalance,
    NotFound,
    PersistenceFailure,
    ValidationFailure,
)
from retail_backoffice.metrics import record_points_transaction
from retail_backoffice.services.results import PointsAdjustmentResult

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

MAX_DESCRIPTION_LENGTH = 255


class PointsTransactionType(str, Enum):
    EARN = "EARN"
    REDEEM = "REDEEM"
    ADJUST = "ADJUST"


DEFAULT_DESCRIPTIONS = {
    PointsTransactionType.EARN: "Points earned",
    PointsTransactionType.REDEEM: "Points redeemed",
    PointsTransactionType.ADJUST: "Points adjusted",
}


def points_delta(transaction_type: PointsTransactionType, points: int) -> int:
    """Signed change to available points.

    REDEEM always subtracts regardless of the sign given; EARN and ADJUST
    apply points as signed.
    """
    if transaction_type is PointsTransactionType.REDEEM:
        return -abs(points)
    return points


def _validate(
    transaction_type: PointsTransactionType | str, points: int, description: str | None
) -> PointsTransactionType:
    try:
        txn_type = PointsTransactionType(transaction_type)
    except ValueError:
        raise ValidationFailure(
            f"Unknown points transaction type: {transaction_type}",
            transaction_type=transaction_type,
        ) from None

    if isinstance(points, bool) or not isinstance(points, int):
        raise ValidationFailure("Points must be an integer", points=points)
    if points == 0:
        raise ValidationFailure("Points must not be zero")
    if txn_type is PointsTransactionType.EARN and points < 0:
        raise ValidationFailure("Earned points must be positive", points=points)
    if description is not None and not isinstance(description, str):
        raise ValidationFailure("Description must be a string")
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationFailure(
            f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )
    return txn_type


class PointsLedger:
    """Apply points transactions to customers.

    Example:
        >>> ledger = PointsLedger(store)
        >>> result = ledger.adjust_points(customer_id, "EARN", 100)
        >>> result.success, result.available_points
        (True, 150)
    """

    def __init__(self, datastore: Datastore):
        self.datastore = datastore

    def adjust_points(
        self,
        customer_id: str,
        transaction_type: PointsTransactionType | str,
        points: int,
        description: str | None = None,
    ) -> PointsAdjustmentResult:
        """Apply one EARN, REDEEM or ADJUST transaction.

        Never raises for business failures; inspect ``success`` and
        ``error_code`` on the returned result instead. A rejected
        transaction leaves balances and the ledger untouched.
        """
        label = getattr(transaction_type, "value", str(transaction_type))
        with tracer.start_as_current_span("points.adjust_points") as span:
            span.set_attribute("points.customer_id", str(customer_id))
            span.set_attribute("points.type", label)
            try:
                txn_type = _validate(transaction_type, points, description)
                available, total = self._apply(customer_id, txn_type, points, description)
            except BackofficeError as e:
                span.set_attribute("points.error_code", e.code)
                record_points_transaction(label, e.code)
                logger.info(
                    "points_adjustment_rejected",
                    customer_id=customer_id,
                    transaction_type=label,
                    points=points,
                    error_code=e.code,
                    reason=e.message,
                )
                return PointsAdjustmentResult.from_error(e)

        record_points_transaction(txn_type.value, "success")
        logger.info(
            "points_adjusted",
            customer_id=customer_id,
            transaction_type=txn_type.value,
            points=points,
            available_points=available,
        )
        return PointsAdjustmentResult(
            success=True,
            message="Points adjusted",
            available_points=available,
            total_points=total,
        )

    def _apply(
        self,
        customer_id: str,
        txn_type: PointsTransactionType,
        points: int,
        description: str | None,
    ) -> tuple[int, int]:
        delta = points_delta(txn_type, points)
        values = {"available_points": Customer.available_points + delta}
        if txn_type is PointsTransactionType.EARN:
            values["total_points"] = Customer.total_points + points

        stmt = (
            update(Customer)
            .where(Customer.id == customer_id, Customer.available_points + delta >= 0)
            .values(**values)
            .returning(Customer.available_points, Customer.total_points)
            .execution_options(synchronize_session=False)
        )

        try:
            with self.datastore.session_scope() as session:
                row = session.execute(stmt).one_or_none()
                if row is None:
                    available = session.execute(
                        select(Customer.available_points).where(Customer.id == customer_id)
                    ).scalar_one_or_none()
                    if available is None:
                        raise NotFound("Customer not found", customer_id=customer_id)
                    raise InsufficientBalance(available=available, requested=abs(delta))

                session.add(
                    PointsLedgerEntry(
                        customer_id=customer_id,
                        type=txn_type.value,
                        points=delta,
                        balance_after=row.available_points,
                        description=description or DEFAULT_DESCRIPTIONS[txn_type],
                    )
                )
        except SQLAlchemyError as e:
            logger.error(
                "points_adjustment_failed",
                customer_id=customer_id,
                transaction_type=txn_type.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise PersistenceFailure(original_error=e) from e

        return row.available_points, row.total_points

    def history(self, customer_id: str, limit: int = 50) -> list[PointsLedgerEntry]:
        """Return a customer's ledger entries, newest first.

        Raises:
            ValidationFailure: If limit is not a positive integer
            PersistenceFailure: On datastore errors
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationFailure("Limit must be a positive integer", limit=limit)

        stmt = (
            select(PointsLedgerEntry)
            .where(PointsLedgerEntry.customer_id == customer_id)
            .order_by(PointsLedgerEntry.id.desc())
            .limit(limit)
        )
        try:
            with self.datastore.session_scope() as session:
                return list(session.execute(stmt).scalars())
        except SQLAlchemyError as e:
            logger.error(
                "points_history_failed",
                customer_id=customer_id,
                error_type=type(e).__name__,
            )
            raise PersistenceFailure(original_error=e) from e
