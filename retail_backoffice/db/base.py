"""
Base class for all SQLAlchemy ORM models.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all back-office ORM models.

    Uses the SQLAlchemy 2.0 declarative pattern so every table shares one
    metadata object (``Base.metadata.create_all`` builds the whole schema).
    """
    pass


def utcnow() -> datetime:
    """Current UTC time as a naive datetime.

    Timestamps are stored naive-in-UTC because SQLite drops tzinfo on the
    way back; keeping them naive everywhere keeps comparisons valid.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
