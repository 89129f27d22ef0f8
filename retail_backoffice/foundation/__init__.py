"""Foundational building blocks for customer segmentation.

This package exposes the purchase-fact contract consumed from the order
history and the RFM (Recency-Frequency-Monetary) scoring and segmentation
engine built on top of it.
"""

from .customer_facts import (
    QUALIFYING_ORDER_STATUSES,
    CustomerFactBuilder,
    CustomerRecord,
    OrderHistoryProvider,
    OrderRecord,
)
from .rfm import (
    NEVER_PURCHASED_DAYS,
    SEGMENT_DESCRIPTORS,
    SEGMENT_RULES,
    CustomerFact,
    RFMScore,
    Segment,
    SegmentDescriptor,
    SegmentRule,
    calculate_rfm,
    classify_segment,
    describe_segment,
    quantile_score,
)

__all__ = [
    "QUALIFYING_ORDER_STATUSES",
    "CustomerFactBuilder",
    "CustomerRecord",
    "OrderHistoryProvider",
    "OrderRecord",
    "NEVER_PURCHASED_DAYS",
    "SEGMENT_DESCRIPTORS",
    "SEGMENT_RULES",
    "CustomerFact",
    "RFMScore",
    "Segment",
    "SegmentDescriptor",
    "SegmentRule",
    "calculate_rfm",
    "classify_segment",
    "describe_segment",
    "quantile_score",
]
