"""Customer analyses built on the RFM foundation."""

from .segmentation import (
    ACTIVE_RECENCY_SCORE,
    VIP_SEGMENTS,
    SegmentationReport,
    SegmentationStats,
    analyze_customer_segments,
    summarize_segments,
)

__all__ = [
    "ACTIVE_RECENCY_SCORE",
    "VIP_SEGMENTS",
    "SegmentationReport",
    "SegmentationStats",
    "analyze_customer_segments",
    "summarize_segments",
]
