"""Shared fixtures for back-office tests."""

import time
from datetime import datetime
from decimal import Decimal

import pytest

from retail_backoffice.db.models import Customer, Order
from retail_backoffice.db.session import Datastore


@pytest.fixture
def datastore():
    """Fresh in-memory SQLite database with the full schema."""
    store = Datastore("sqlite:///:memory:")
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture
def file_datastore(tmp_path):
    """File-backed SQLite database, usable from several threads."""
    store = Datastore(f"sqlite:///{tmp_path / 'backoffice.db'}")
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture
def make_customer(datastore):
    """Insert a customer and return its id."""

    def _make(name="Alice", *, available_points=0, total_points=0, is_active=True, code=None):
        with datastore.session_scope() as session:
            customer = Customer(
                name=name,
                code=code,
                available_points=available_points,
                total_points=total_points,
                is_active=is_active,
            )
            session.add(customer)
            session.flush()
            return customer.id

    return _make


@pytest.fixture
def make_order(datastore):
    """Insert an order for a customer."""

    def _make(order_no, customer_id, total_amount, created_at, status="COMPLETED"):
        with datastore.session_scope() as session:
            session.add(
                Order(
                    order_no=order_no,
                    customer_id=customer_id,
                    status=status,
                    total_amount=Decimal(str(total_amount)),
                    created_at=created_at,
                )
            )

    return _make


@pytest.fixture
def as_of():
    return datetime(2024, 1, 31)


@pytest.fixture(params=["EST+5", "TST-8"], ids=["utc-minus-5", "utc-plus-8"])
def non_utc_timezone(request, monkeypatch):
    """Run with the process local time zone moved away from UTC."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", request.param)
    time.tzset()
    yield request.param
    monkeypatch.undo()
    time.tzset()
