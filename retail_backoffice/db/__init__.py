"""Persistence layer: ORM models and the Datastore session handle."""

from retail_backoffice.db.base import Base, utcnow
from retail_backoffice.db.models import (
    AuditLog,
    Customer,
    NumberingRule,
    Order,
    PointsLedgerEntry,
    SequenceCounter,
)
from retail_backoffice.db.session import Datastore, create_datastore_engine

__all__ = [
    "Base",
    "utcnow",
    "AuditLog",
    "Customer",
    "NumberingRule",
    "Order",
    "PointsLedgerEntry",
    "SequenceCounter",
    "Datastore",
    "create_datastore_engine",
]
