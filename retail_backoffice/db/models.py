"""
ORM models for the back-office core.

Only the tables the core reads or mutates are modelled here: customers and
their orders (order history for RFM), the points ledger, sequence counters,
configurable numbering rules and the audit log.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retail_backoffice.db.base import Base, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Customer(Base):
    """
    Customer (member) master record.

    Business Rules:
    - available_points is the spendable running balance and never negative
    - total_points counts lifetime earned points and only grows on EARN
    """

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    code: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    orders: Mapped[list["Order"]] = relationship(back_populates="customer")
    points_entries: Mapped[list["PointsLedgerEntry"]] = relationship(
        back_populates="customer", order_by="PointsLedgerEntry.id"
    )

    __table_args__ = (
        CheckConstraint("available_points >= 0", name="ck_customers_available_points"),
    )

    def __repr__(self) -> str:
        return (
            f"<Customer(id={self.id}, code={self.code}, "
            f"available_points={self.available_points}, total_points={self.total_points})>"
        )


class Order(Base):
    """Sales order header; only the fields RFM needs are mapped."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_no: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    customer_id: Mapped[str | None] = mapped_column(
        ForeignKey("customers.id"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    customer: Mapped[Customer | None] = relationship(back_populates="orders")

    __table_args__ = (Index("ix_orders_customer_status", "customer_id", "status"),)


class PointsLedgerEntry(Base):
    """
    Append-only audit record of one points-balance mutation.

    points is the signed delta actually applied (REDEEM negative, EARN
    positive, ADJUST as signed by the caller); balance_after is the
    customer's available_points right after the mutation.
    """

    __tablename__ = "points_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[str] = mapped_column(
        ForeignKey("customers.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    customer: Mapped[Customer] = relationship(back_populates="points_entries")

    __table_args__ = (
        CheckConstraint("type IN ('EARN', 'REDEEM', 'ADJUST')", name="ck_points_ledger_type"),
        CheckConstraint("balance_after >= 0", name="ck_points_ledger_balance"),
    )


class SequenceCounter(Base):
    """
    Last issued sequence value per (scope, period).

    scope is the full document prefix (e.g. "ORD-20240115-" or "C");
    period_key is an extra scoping key for numbers whose period is not
    embedded in the prefix (e.g. "202401" for monthly invoice numbers),
    empty otherwise.
    """

    __tablename__ = "sequence_counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope: Mapped[str] = mapped_column(String(60), nullable=False)
    period_key: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("scope", "period_key", name="uq_sequence_counters_scope_period"),
    )

    def __repr__(self) -> str:
        return (
            f"<SequenceCounter(scope={self.scope!r}, period_key={self.period_key!r}, "
            f"last_value={self.last_value})>"
        )


class NumberingRule(Base):
    """
    Administrator-configurable numbering rule.

    Numbers are built as prefix + formatted date (optional) + sequence
    zero-padded to sequence_length. current_sequence restarts at 1 when
    reset_period (DAILY, MONTHLY, YEARLY) rolls over.
    """

    __tablename__ = "numbering_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    prefix: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    date_format: Mapped[str | None] = mapped_column(String(10), nullable=True)
    sequence_length: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    current_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_period: Mapped[str] = mapped_column(String(10), nullable=False, default="NEVER")
    last_reset_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "prefix": self.prefix,
            "date_format": self.date_format,
            "sequence_length": self.sequence_length,
            "current_sequence": self.current_sequence,
            "reset_period": self.reset_period,
            "is_active": self.is_active,
        }


class AuditLog(Base):
    """Record of a change made through the core, with before/after values."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    module: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    target_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    old_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
