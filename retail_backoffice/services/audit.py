"""Audit trail helpers: shallow structural diff and audit-log rows."""

from __future__ import annotations

from typing import Any, Mapping

import structlog
from sqlalchemy.orm import Session

from retail_backoffice.db.models import AuditLog

logger = structlog.get_logger(__name__)

AUDIT_ACTIONS = ("CREATE", "UPDATE", "DELETE")


def diff_objects(
    old: Mapping[str, Any], new: Mapping[str, Any]
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return the changed keys of two flat records.

    Keys are compared one level deep. Nested values (dicts, lists) are
    compared by full value, so any change inside them reports the whole
    nested value on both sides. A key present only in ``old`` reports
    ``None`` as its new value; a key present only in ``new`` reports
    ``None`` as its old value.

    Returns:
        (old_changes, new_changes) holding only the keys that differ

    Example:
        >>> diff_objects({"name": "A", "tags": [1]}, {"name": "A", "tags": [1, 2]})
        ({'tags': [1]}, {'tags': [1, 2]})
    """
    old_changes: dict[str, Any] = {}
    new_changes: dict[str, Any] = {}

    for key in {**old, **new}:
        old_value = old.get(key)
        new_value = new.get(key)
        if old_value != new_value:
            old_changes[key] = old_value
            new_changes[key] = new_value

    return old_changes, new_changes


def record_audit(
    session: Session,
    action: str,
    module: str,
    target_id: str | None = None,
    target_type: str | None = None,
    old_data: Mapping[str, Any] | None = None,
    new_data: Mapping[str, Any] | None = None,
    description: str | None = None,
    user_id: str | None = None,
) -> AuditLog:
    """Add an audit-log row to the session's current transaction.

    Raises:
        ValueError: If action is not CREATE, UPDATE or DELETE
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    entry = AuditLog(
        user_id=user_id,
        action=action,
        module=module,
        target_id=target_id,
        target_type=target_type,
        old_data=dict(old_data) if old_data is not None else None,
        new_data=dict(new_data) if new_data is not None else None,
        description=description,
    )
    session.add(entry)
    logger.info(
        "audit_recorded",
        action=action,
        module=module,
        target_id=target_id,
        changed_keys=sorted(new_data or old_data or {}),
    )
    return entry
