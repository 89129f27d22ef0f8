"""Database-backed back-office services.

Each service takes a :class:`~retail_backoffice.db.Datastore` at
construction; none of them holds global connection state.
"""

from .audit import diff_objects, record_audit
from .numbering import (
    DOCUMENT_TYPES,
    DocumentType,
    SequenceGenerator,
    max_code_lookup,
    parse_sequence_suffix,
)
from .numbering_rules import NumberingRuleService, RuleCodes
from .order_history import SqlOrderHistoryProvider
from .points import PointsLedger, PointsTransactionType
from .results import ActionResult, NumberIssueResult, PointsAdjustmentResult

__all__ = [
    "diff_objects",
    "record_audit",
    "DOCUMENT_TYPES",
    "DocumentType",
    "SequenceGenerator",
    "max_code_lookup",
    "parse_sequence_suffix",
    "NumberingRuleService",
    "RuleCodes",
    "SqlOrderHistoryProvider",
    "PointsLedger",
    "PointsTransactionType",
    "ActionResult",
    "NumberIssueResult",
    "PointsAdjustmentResult",
]
