"""Administrator-configurable numbering rules.

A rule describes how one document kind is numbered: a prefix, an optional
date part, a zero-padded sequence and an optional reset period. Unlike the
fixed formats in :mod:`retail_backoffice.services.numbering`, rules live in
the ``numbering_rules`` table and can be edited at runtime; every edit is
written to the audit log.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

import structlog
from opentelemetry import trace
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from retail_backoffice.db.base import utcnow
from retail_backoffice.db.models import NumberingRule
from retail_backoffice.db.session import Datastore
from retail_backoffice.errors import NotFound, PersistenceFailure, ValidationFailure
from retail_backoffice.metrics import record_number_issued
from retail_backoffice.services.audit import diff_objects, record_audit

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

AUDIT_MODULE = "numbering_rules"

DATE_FORMATS = {
    "YYYYMMDD": "%Y%m%d",
    "YYYYMM": "%Y%m",
    "YYYY": "%Y",
}

RESETTING_PERIODS = ("DAILY", "MONTHLY", "YEARLY")


class RuleCodes:
    """Codes of the commonly configured numbering rules."""

    ORDER = "ORDER"
    PURCHASE_ORDER = "PO"
    REFUND = "REFUND"
    GOODS_RECEIPT = "GR"
    GOODS_ISSUE = "GI"
    STOCK_COUNT = "SC"
    STOCK_TRANSFER = "ST"
    STOCK_ADJUSTMENT = "SA"
    INVOICE = "INV"
    HOLD_ORDER = "HOLD"
    POS_SESSION = "POS"
    CASHIER_SHIFT = "SHIFT"
    CUSTOMER = "CUST"


class NumberingRuleConfig(BaseModel):
    """Validated editable fields of a numbering rule."""

    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=100)
    prefix: str = Field(default="", max_length=20)
    date_format: Literal["YYYYMMDD", "YYYYMM", "YYYY"] | None = None
    sequence_length: int = Field(default=4, ge=1, le=10)
    reset_period: Literal["NEVER", "DAILY", "MONTHLY", "YEARLY"] = "NEVER"
    is_active: bool = True


UPDATABLE_FIELDS = frozenset(NumberingRuleConfig.model_fields) - {"code"}


def _naive_utc(now: datetime | None) -> datetime:
    if now is None:
        return utcnow()
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def period_bounds(reset_period: str | None, now: datetime) -> tuple[datetime, datetime] | None:
    """Return the [start, end) window of the period containing now.

    Returns None for rules that never reset.
    """
    if reset_period == "DAILY":
        start = datetime(now.year, now.month, now.day)
        return start, start + timedelta(days=1)
    if reset_period == "MONTHLY":
        start = datetime(now.year, now.month, 1)
        if now.month == 12:
            return start, datetime(now.year + 1, 1, 1)
        return start, datetime(now.year, now.month + 1, 1)
    if reset_period == "YEARLY":
        return datetime(now.year, 1, 1), datetime(now.year + 1, 1, 1)
    return None


def should_reset(reset_period: str | None, last_reset_at: datetime | None, now: datetime) -> bool:
    """True when last_reset_at falls outside the current reset period."""
    bounds = period_bounds(reset_period, now)
    if bounds is None:
        return False
    if last_reset_at is None:
        return True
    start, end = bounds
    return not (start <= last_reset_at < end)


def format_rule_number(
    prefix: str, date_format: str | None, sequence: int, sequence_length: int, now: datetime
) -> str:
    """Compose ``prefix + date part + zero-padded sequence``."""
    date_part = now.strftime(DATE_FORMATS[date_format]) if date_format else ""
    return f"{prefix}{date_part}{sequence:0{sequence_length}d}"


def _reset_condition(now: datetime):
    last = NumberingRule.last_reset_at
    clauses = []
    for period in RESETTING_PERIODS:
        start, end = period_bounds(period, now)
        clauses.append(
            and_(
                NumberingRule.reset_period == period,
                or_(last.is_(None), last < start, last >= end),
            )
        )
    return or_(*clauses)


class NumberingRuleService:
    """Manage numbering rules and issue numbers from them.

    Example:
        >>> service = NumberingRuleService(store)
        >>> service.create_rule(code="ORDER", name="Sales order", prefix="SO",
        ...                     date_format="YYYYMMDD", sequence_length=4,
        ...                     reset_period="DAILY")
        >>> service.generate_next_number("ORDER", now=datetime(2024, 1, 15))
        'SO202401150001'
    """

    def __init__(self, datastore: Datastore):
        self.datastore = datastore

    @contextmanager
    def _transaction(self, operation: str, code: str) -> Iterator[Session]:
        try:
            with self.datastore.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(
                "numbering_rule_operation_failed",
                operation=operation,
                rule_code=code,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise PersistenceFailure(original_error=e) from e

    @staticmethod
    def _get(session: Session, code: str) -> NumberingRule:
        rule = session.execute(
            select(NumberingRule).where(NumberingRule.code == code)
        ).scalar_one_or_none()
        if rule is None:
            raise NotFound(f"Numbering rule {code} does not exist", rule_code=code)
        return rule

    @staticmethod
    def _validate(fields: dict[str, Any]) -> NumberingRuleConfig:
        try:
            return NumberingRuleConfig(**fields)
        except ValidationError as e:
            invalid = sorted(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ValidationFailure(
                f"Invalid numbering rule fields: {', '.join(invalid)}", fields=invalid
            ) from e

    def create_rule(self, *, user_id: str | None = None, **fields: Any) -> NumberingRule:
        """Create a rule with its sequence at zero.

        Raises:
            ValidationFailure: If fields are invalid or the code is taken
        """
        config = self._validate(fields)
        with self._transaction("create", config.code) as session:
            existing = session.execute(
                select(NumberingRule.id).where(NumberingRule.code == config.code)
            ).scalar_one_or_none()
            if existing is not None:
                raise ValidationFailure(
                    "Numbering rule code already exists", rule_code=config.code
                )

            rule = NumberingRule(**config.model_dump(), current_sequence=0)
            session.add(rule)
            session.flush()
            record_audit(
                session,
                "CREATE",
                AUDIT_MODULE,
                target_id=rule.id,
                target_type="NumberingRule",
                new_data=rule.to_dict(),
                description=f"Created numbering rule {rule.code}",
                user_id=user_id,
            )

        logger.info("numbering_rule_created", rule_code=config.code)
        return rule

    def update_rule(
        self, code: str, *, user_id: str | None = None, **changes: Any
    ) -> NumberingRule:
        """Apply changes to a rule and audit the changed fields.

        The code and current sequence cannot be changed here; use
        :meth:`reset_sequence` to restart numbering.

        Raises:
            NotFound: If the rule does not exist
            ValidationFailure: On unknown fields or invalid values
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationFailure(
                f"Fields cannot be updated: {sorted(unknown)}", fields=sorted(unknown)
            )

        with self._transaction("update", code) as session:
            rule = self._get(session, code)
            before = rule.to_dict()
            config = self._validate({**before, **changes})
            for field in changes:
                setattr(rule, field, getattr(config, field))
            after = rule.to_dict()

            old_changes, new_changes = diff_objects(before, after)
            if new_changes:
                record_audit(
                    session,
                    "UPDATE",
                    AUDIT_MODULE,
                    target_id=rule.id,
                    target_type="NumberingRule",
                    old_data=old_changes,
                    new_data=new_changes,
                    description=f"Updated numbering rule {code}",
                    user_id=user_id,
                )

        logger.info("numbering_rule_updated", rule_code=code, changed=sorted(new_changes))
        return rule

    def generate_next_number(self, code: str, now: datetime | None = None) -> str:
        """Advance a rule's sequence and return the formatted number.

        The sequence restarts at 1 when the rule's reset period has rolled
        over since ``last_reset_at``. The read-modify-write happens in one
        conditional UPDATE so the row stays locked until commit.

        Raises:
            NotFound: If the rule does not exist
            ValidationFailure: If the rule is inactive
            PersistenceFailure: On datastore errors
        """
        now = _naive_utc(now)
        reset = _reset_condition(now)
        stmt = (
            update(NumberingRule)
            .where(NumberingRule.code == code, NumberingRule.is_active.is_(True))
            .values(
                current_sequence=case(
                    (reset, 1), else_=NumberingRule.current_sequence + 1
                ),
                last_reset_at=case((reset, now), else_=NumberingRule.last_reset_at),
                updated_at=now,
            )
            .returning(
                NumberingRule.current_sequence,
                NumberingRule.prefix,
                NumberingRule.date_format,
                NumberingRule.sequence_length,
            )
            .execution_options(synchronize_session=False)
        )

        with tracer.start_as_current_span("numbering_rules.generate_next_number") as span:
            span.set_attribute("numbering.rule_code", code)
            with self._transaction("generate", code) as session:
                row = session.execute(stmt).one_or_none()
                if row is None:
                    rule = self._get(session, code)
                    raise ValidationFailure(
                        f"Numbering rule {code} is inactive", rule_code=rule.code
                    )
            span.set_attribute("numbering.value", row.current_sequence)

        number = format_rule_number(
            row.prefix, row.date_format, row.current_sequence, row.sequence_length, now
        )
        record_number_issued(f"rule:{code}")
        logger.info("rule_number_issued", rule_code=code, number=number)
        return number

    def preview_next_number(self, code: str, now: datetime | None = None) -> str:
        """Return the number the next generate call would produce, without issuing it.

        Raises:
            NotFound: If the rule does not exist
        """
        now = _naive_utc(now)
        with self._transaction("preview", code) as session:
            rule = self._get(session, code)
            if should_reset(rule.reset_period, rule.last_reset_at, now):
                sequence = 1
            else:
                sequence = rule.current_sequence + 1
            return format_rule_number(
                rule.prefix, rule.date_format, sequence, rule.sequence_length, now
            )

    def reset_sequence(
        self, code: str, *, user_id: str | None = None, now: datetime | None = None
    ) -> None:
        """Restart a rule's numbering so the next number uses sequence 1.

        Raises:
            NotFound: If the rule does not exist
        """
        now = _naive_utc(now)
        with self._transaction("reset", code) as session:
            rule = self._get(session, code)
            previous = rule.current_sequence
            rule.current_sequence = 0
            rule.last_reset_at = now
            record_audit(
                session,
                "UPDATE",
                AUDIT_MODULE,
                target_id=rule.id,
                target_type="NumberingRule",
                old_data={"current_sequence": previous},
                new_data={"current_sequence": 0},
                description=f"Reset numbering rule {code}",
                user_id=user_id,
            )
        logger.warning("numbering_rule_reset", rule_code=code, previous_sequence=previous)
