"""Sequential business-document numbers.

Every document kind (orders, purchase orders, refunds, customer codes, ...)
gets human-readable, gap-tolerant but collision-free numbers such as
``ORD-20240115-006`` or ``C00100``. The last issued value per scope lives in
the ``sequence_counters`` table and is advanced with a single atomic
``UPDATE ... RETURNING``, so concurrent callers serialise on the database
row instead of racing on a read-then-write.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from types import MappingProxyType
from typing import Callable, Mapping, Optional

import structlog
from opentelemetry import trace
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import InstrumentedAttribute, Session

from retail_backoffice.db.base import utcnow
from retail_backoffice.db.models import SequenceCounter
from retail_backoffice.db.session import Datastore
from retail_backoffice.errors import (
    BackofficeError,
    ConflictOrRace,
    NotFound,
    PersistenceFailure,
    ValidationFailure,
)
from retail_backoffice.metrics import record_number_issued, record_sequence_collision
from retail_backoffice.services.results import NumberIssueResult

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

# Returns the most recently issued number starting with prefix, or None
LastIssuedLookup = Callable[[Session, str], Optional[str]]

_DIGITS = re.compile(r"[0-9]+")

# Creating a scope's counter row is retried once after a unique-key collision
MAX_COUNTER_ATTEMPTS = 2


def parse_sequence_suffix(number: str | None, prefix: str) -> int:
    """Parse the numeric part that follows ``prefix`` in an issued number.

    Returns 0 when number is None, does not start with prefix, or its
    suffix is not purely ASCII digits.

    Example:
        >>> parse_sequence_suffix("ORD-20240115-005", "ORD-20240115-")
        5
        >>> parse_sequence_suffix("C00099", "C")
        99
    """
    if not number or not number.startswith(prefix):
        return 0
    suffix = number[len(prefix):]
    if not _DIGITS.fullmatch(suffix):
        return 0
    return int(suffix)


def max_code_lookup(column: InstrumentedAttribute) -> LastIssuedLookup:
    """Build a lookup returning the greatest value of column starting with a prefix.

    Used to seed a brand-new counter from numbers issued before the
    counter table existed. Comparison is lexicographic, which matches
    numeric order as long as all existing numbers share the same width.

    Example:
        >>> generator = SequenceGenerator(store, max_code_lookup(Customer.code))
    """

    def lookup(session: Session, prefix: str) -> str | None:
        stmt = select(func.max(column)).where(column.startswith(prefix, autoescape=True))
        return session.execute(stmt).scalar_one_or_none()

    return lookup


@dataclass(frozen=True)
class DocumentType:
    """Numbering format of one business-document kind.

    Attributes:
        name: Registry key (e.g. "ORDER")
        prefix: Leading code (e.g. "ORD")
        width: Zero-padded width of the sequence part
        date_scoped: Embed the issue date, giving ``{prefix}-{YYYYMMDD}-{seq}``
        period_format: strftime format of a period key that scopes the
            counter without appearing in the number (e.g. "%Y%m")
    """

    name: str
    prefix: str
    width: int
    date_scoped: bool = False
    period_format: str | None = None

    def scope_prefix(self, on: date) -> str:
        if self.date_scoped:
            return f"{self.prefix}-{on:%Y%m%d}-"
        return self.prefix

    def period_key(self, on: date) -> str | None:
        if self.period_format is None:
            return None
        return on.strftime(self.period_format)


DOCUMENT_TYPES: Mapping[str, DocumentType] = MappingProxyType(
    {
        doc.name: doc
        for doc in (
            DocumentType("ORDER", "ORD", 3, date_scoped=True),
            DocumentType("PURCHASE_ORDER", "PO", 3, date_scoped=True),
            DocumentType("REFUND", "RF", 4, date_scoped=True),
            DocumentType("HOLD_ORDER", "HOLD", 4, date_scoped=True),
            DocumentType("CASHIER_SHIFT", "SHIFT", 3, date_scoped=True),
            DocumentType("POS_SESSION", "POS", 3, date_scoped=True),
            DocumentType("CUSTOMER", "C", 5),
            DocumentType("SUPPLIER", "S", 5),
            DocumentType("INVOICE", "AA", 8, period_format="%Y%m"),
        )
    }
)


def _utc_date(on: date | datetime | None) -> date:
    if on is None:
        return datetime.now(timezone.utc).date()
    if isinstance(on, datetime):
        if on.tzinfo is not None:
            on = on.astimezone(timezone.utc)
        return on.date()
    return on


def _metric_scope(prefix: str) -> str:
    # Drop the embedded date so the label set stays bounded
    return prefix.rstrip("-0123456789") or prefix


class SequenceGenerator:
    """Issue sequential numbers per (prefix, period) scope.

    Args:
        datastore: Database holding the ``sequence_counters`` table
        last_issued_lookup: Optional ``(session, prefix) -> str | None``
            used to seed a scope's counter the first time it is seen

    Example:
        >>> generator = SequenceGenerator(store)
        >>> generator.next_number("ORD-20240115-")
        'ORD-20240115-001'
        >>> generator.issue("CUSTOMER")
        'C00001'
    """

    def __init__(
        self,
        datastore: Datastore,
        last_issued_lookup: LastIssuedLookup | None = None,
    ):
        self.datastore = datastore
        self.last_issued_lookup = last_issued_lookup

    def next_number(
        self, prefix: str, width: int = 3, period_key: str | None = None
    ) -> str:
        """Issue the next number for a scope.

        Raises:
            ValidationFailure: If prefix is empty or width is not positive
            ConflictOrRace: If creating the scope's counter collided twice
            PersistenceFailure: On any other datastore error
        """
        if not isinstance(prefix, str) or not prefix:
            raise ValidationFailure("Number prefix must be a non-empty string")
        if isinstance(width, bool) or not isinstance(width, int) or width < 1:
            raise ValidationFailure("Sequence width must be a positive integer", width=width)

        key = period_key or ""
        with tracer.start_as_current_span("numbering.next_number") as span:
            span.set_attribute("numbering.prefix", prefix)
            span.set_attribute("numbering.period_key", key)
            value = self._advance(prefix, key)
            span.set_attribute("numbering.value", value)

        record_number_issued(_metric_scope(prefix))
        number = f"{prefix}{value:0{width}d}"
        logger.info("document_number_issued", number=number, period_key=key or None)
        return number

    def _advance(self, prefix: str, period_key: str) -> int:
        attempt = 0
        while True:
            attempt += 1
            try:
                with self.datastore.session_scope() as session:
                    return self._next_value(session, prefix, period_key)
            except IntegrityError as e:
                # Another caller created the counter row first
                record_sequence_collision()
                logger.warning(
                    "sequence_counter_collision",
                    scope=prefix,
                    period_key=period_key,
                    attempt=attempt,
                )
                if attempt >= MAX_COUNTER_ATTEMPTS:
                    raise ConflictOrRace(scope=prefix, period_key=period_key) from e
            except SQLAlchemyError as e:
                logger.error(
                    "sequence_issue_failed",
                    scope=prefix,
                    period_key=period_key,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise PersistenceFailure(original_error=e) from e

    def _next_value(self, session: Session, prefix: str, period_key: str) -> int:
        stmt = (
            update(SequenceCounter)
            .where(
                SequenceCounter.scope == prefix,
                SequenceCounter.period_key == period_key,
            )
            .values(last_value=SequenceCounter.last_value + 1, updated_at=utcnow())
            .returning(SequenceCounter.last_value)
            .execution_options(synchronize_session=False)
        )
        value = session.execute(stmt).scalar_one_or_none()
        if value is not None:
            return value

        seed = self._seed(session, prefix, period_key)
        session.add(SequenceCounter(scope=prefix, period_key=period_key, last_value=seed + 1))
        session.flush()
        logger.debug("sequence_counter_created", scope=prefix, period_key=period_key, seed=seed)
        return seed + 1

    def _seed(self, session: Session, prefix: str, period_key: str) -> int:
        # A period key that is not part of the prefix cannot be told apart
        # in historical numbers, so such scopes always start from zero.
        if self.last_issued_lookup is None or period_key:
            return 0
        return parse_sequence_suffix(self.last_issued_lookup(session, prefix), prefix)

    def issue(
        self, document_type: DocumentType | str, on: date | datetime | None = None
    ) -> str:
        """Issue the next number of a document type for a UTC date.

        Raises:
            ValidationFailure: If document_type is not a registered name
        """
        doc = self._resolve(document_type)
        day = _utc_date(on)
        return self.next_number(doc.scope_prefix(day), doc.width, doc.period_key(day))

    def issue_result(
        self, document_type: DocumentType | str, on: date | datetime | None = None
    ) -> NumberIssueResult:
        """Like :meth:`issue`, but report failures as a structured result."""
        try:
            number = self.issue(document_type, on)
        except BackofficeError as e:
            return NumberIssueResult.from_error(e)
        return NumberIssueResult(success=True, message="Number issued", number=number)

    def reset_counter(self, prefix: str, period_key: str | None = None) -> None:
        """Reset a scope so its next number is 1.

        Raises:
            NotFound: If no counter exists for the scope
            PersistenceFailure: On datastore errors
        """
        key = period_key or ""
        try:
            with self.datastore.session_scope() as session:
                stmt = (
                    update(SequenceCounter)
                    .where(
                        SequenceCounter.scope == prefix,
                        SequenceCounter.period_key == key,
                    )
                    .values(last_value=0, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if session.execute(stmt).rowcount == 0:
                    raise NotFound(f"No sequence counter for {prefix!r}", scope=prefix)
        except SQLAlchemyError as e:
            logger.error("sequence_reset_failed", scope=prefix, error_type=type(e).__name__)
            raise PersistenceFailure(original_error=e) from e
        logger.warning("sequence_counter_reset", scope=prefix, period_key=key or None)

    @staticmethod
    def _resolve(document_type: DocumentType | str) -> DocumentType:
        if isinstance(document_type, DocumentType):
            return document_type
        try:
            return DOCUMENT_TYPES[document_type]
        except KeyError:
            raise ValidationFailure(
                f"Unknown document type: {document_type}",
                known=sorted(DOCUMENT_TYPES),
            ) from None
