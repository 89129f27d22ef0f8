"""Customer purchase facts derived from order history.

The RFM engine only sees :class:`CustomerFact` records. Whatever supplies
them is responsible for deciding which orders count: only orders in a
qualifying status (completed or paid by default) contribute to recency,
frequency and monetary value, and only active customers are included.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from retail_backoffice.foundation.rfm import CustomerFact

#: Order statuses that count as a purchase.
QUALIFYING_ORDER_STATUSES: tuple[str, ...] = ("COMPLETED", "PAID")


@dataclass(frozen=True)
class CustomerRecord:
    """Minimal customer master data needed for segmentation."""

    customer_id: str
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class OrderRecord:
    """Summary of one order as exported by the order module."""

    order_id: str
    customer_id: str
    status: str
    total_amount: Decimal
    created_at: datetime


@runtime_checkable
class OrderHistoryProvider(Protocol):
    """Anything that can produce per-customer purchase facts."""

    def fetch_customer_facts(self) -> list[CustomerFact]:
        ...


class CustomerFactBuilder:
    """Aggregate customers and orders held in memory into purchase facts.

    Parameters
    ----------
    customers:
        Customer master records. Inactive customers are skipped.
    orders:
        Orders of any status; non-qualifying statuses are ignored, as are
        orders of customers not in ``customers``.
    qualifying_statuses:
        Statuses that count as a purchase.
    """

    REQUIRED_ORDER_FIELDS = ("order_id", "customer_id", "status", "total_amount", "created_at")

    def __init__(
        self,
        customers: Iterable[CustomerRecord],
        orders: Iterable[OrderRecord],
        qualifying_statuses: Sequence[str] = QUALIFYING_ORDER_STATUSES,
    ) -> None:
        self.customers = list(customers)
        self.orders = list(orders)
        self.qualifying_statuses = frozenset(s.upper() for s in qualifying_statuses)

    @classmethod
    def from_records(
        cls,
        customers: Iterable[Mapping[str, Any]],
        orders: Iterable[Mapping[str, Any]],
        qualifying_statuses: Sequence[str] = QUALIFYING_ORDER_STATUSES,
    ) -> "CustomerFactBuilder":
        """Validate raw dictionaries (e.g. parsed JSON) and build a provider."""

        customer_records: list[CustomerRecord] = []
        for idx, raw in enumerate(customers):
            if not raw.get("customer_id"):
                raise ValueError(
                    "Customer record missing customer_id", {"record_index": idx}
                )
            customer_records.append(
                CustomerRecord(
                    customer_id=str(raw["customer_id"]),
                    name=str(raw.get("name") or raw["customer_id"]),
                    is_active=bool(raw.get("is_active", True)),
                )
            )

        order_records: list[OrderRecord] = []
        for idx, raw in enumerate(orders):
            missing = [name for name in cls.REQUIRED_ORDER_FIELDS if raw.get(name) in (None, "")]
            if missing:
                raise ValueError(
                    "Order record missing required fields",
                    {"missing_fields": missing, "record_index": idx},
                )
            created_at = raw["created_at"]
            if isinstance(created_at, str):
                created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            if not isinstance(created_at, datetime):
                raise TypeError(
                    "created_at must be a datetime or ISO-8601 string",
                    {"record_index": idx, "value": created_at},
                )
            order_records.append(
                OrderRecord(
                    order_id=str(raw["order_id"]),
                    customer_id=str(raw["customer_id"]),
                    status=str(raw["status"]).upper(),
                    total_amount=Decimal(str(raw["total_amount"])),
                    created_at=created_at,
                )
            )

        return cls(customer_records, order_records, qualifying_statuses)

    def fetch_customer_facts(self) -> list[CustomerFact]:
        active = {c.customer_id: c for c in self.customers if c.is_active}

        last_purchase: dict[str, datetime] = {}
        counts: dict[str, int] = {}
        totals: dict[str, Decimal] = {}
        for order in self.orders:
            if order.customer_id not in active:
                continue
            if order.status.upper() not in self.qualifying_statuses:
                continue
            cid = order.customer_id
            previous = last_purchase.get(cid)
            if previous is None or order.created_at > previous:
                last_purchase[cid] = order.created_at
            counts[cid] = counts.get(cid, 0) + 1
            totals[cid] = totals.get(cid, Decimal("0")) + order.total_amount

        return [
            CustomerFact(
                customer_id=cid,
                customer_name=customer.name,
                last_purchase_date=last_purchase.get(cid),
                purchase_count=counts.get(cid, 0),
                total_amount=totals.get(cid, Decimal("0")),
            )
            for cid, customer in active.items()
        ]
