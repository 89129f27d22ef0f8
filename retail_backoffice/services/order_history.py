"""Purchase facts read from the back-office database."""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError

from retail_backoffice.db.models import Customer, Order
from retail_backoffice.db.session import Datastore
from retail_backoffice.errors import PersistenceFailure
from retail_backoffice.foundation.customer_facts import QUALIFYING_ORDER_STATUSES
from retail_backoffice.foundation.rfm import CustomerFact

logger = structlog.get_logger(__name__)


class SqlOrderHistoryProvider:
    """Order-history provider backed by the ``customers`` and ``orders`` tables.

    One grouped query returns a fact per active customer. Customers without
    a qualifying order still get a fact (no last purchase, zero count and
    amount) so they land in the Lost segment instead of vanishing.
    """

    def __init__(
        self,
        datastore: Datastore,
        qualifying_statuses: Sequence[str] = QUALIFYING_ORDER_STATUSES,
    ):
        self.datastore = datastore
        self.qualifying_statuses = tuple(qualifying_statuses)

    def fetch_customer_facts(self) -> list[CustomerFact]:
        stmt = (
            select(
                Customer.id,
                Customer.name,
                func.max(Order.created_at).label("last_purchase_date"),
                func.count(Order.id).label("purchase_count"),
                func.sum(Order.total_amount).label("total_amount"),
            )
            .select_from(Customer)
            .outerjoin(
                Order,
                and_(
                    Order.customer_id == Customer.id,
                    Order.status.in_(self.qualifying_statuses),
                ),
            )
            .where(Customer.is_active.is_(True))
            .group_by(Customer.id, Customer.name)
            .order_by(Customer.id)
        )

        try:
            with self.datastore.session_scope() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error("customer_facts_query_failed", error_type=type(e).__name__, error=str(e))
            raise PersistenceFailure(original_error=e) from e

        facts = [
            CustomerFact(
                customer_id=row.id,
                customer_name=row.name,
                last_purchase_date=row.last_purchase_date,
                purchase_count=int(row.purchase_count),
                total_amount=(
                    Decimal(str(row.total_amount))
                    if row.total_amount is not None
                    else Decimal("0")
                ),
            )
            for row in rows
        ]
        logger.debug("customer_facts_loaded", customers=len(facts))
        return facts
