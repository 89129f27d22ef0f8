"""Customer segmentation report.

Scores the whole active customer base and summarises it, answering:
- How many customers are there, and how many bought recently?
- What is the average customer spend?
- How many VIP (Champions or Loyal) customers do we have?
- How are customers distributed across segments?
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Sequence

import structlog
from opentelemetry import trace

from retail_backoffice.foundation.customer_facts import OrderHistoryProvider
from retail_backoffice.foundation.rfm import RFMScore, Segment, calculate_rfm
from retail_backoffice.metrics import record_rfm_duration

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

# Customers with a recency score at or above this bought recently enough to
# count as active.
ACTIVE_RECENCY_SCORE = 3

VIP_SEGMENTS = frozenset({Segment.CHAMPIONS, Segment.LOYAL})


@dataclass(frozen=True)
class SegmentationStats:
    """Population-level aggregates of a segmentation run.

    Attributes
    ----------
    total_customers:
        Number of scored customers
    active_customers:
        Customers with recency_score >= 3
    average_amount:
        Unrounded mean total_amount per customer (0 for an empty
        population)
    vip_customers:
        Customers in the Champions or Loyal segments
    segment_distribution:
        Customer count for every segment, zero-filled
    """

    total_customers: int
    active_customers: int
    average_amount: Decimal
    vip_customers: int
    segment_distribution: dict[Segment, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.total_customers < 0:
            raise ValueError(
                f"Total customers cannot be negative: {self.total_customers}"
            )
        if not 0 <= self.active_customers <= self.total_customers:
            raise ValueError(
                f"Active customers ({self.active_customers}) must be between 0 and total customers ({self.total_customers})"
            )
        if not 0 <= self.vip_customers <= self.total_customers:
            raise ValueError(
                f"VIP customers ({self.vip_customers}) must be between 0 and total customers ({self.total_customers})"
            )


@dataclass(frozen=True)
class SegmentationReport:
    customers: list[RFMScore]
    stats: SegmentationStats


def summarize_segments(scores: Sequence[RFMScore]) -> SegmentationStats:
    """Compute population aggregates for scored customers.

    Examples
    --------
    >>> summarize_segments([]).average_amount
    Decimal('0')
    """
    distribution = {segment: 0 for segment in Segment}
    if not scores:
        return SegmentationStats(
            total_customers=0,
            active_customers=0,
            average_amount=Decimal("0"),
            vip_customers=0,
            segment_distribution=distribution,
        )

    for score in scores:
        distribution[score.segment] += 1

    total_customers = len(scores)
    total_amount = sum((Decimal(str(s.total_amount)) for s in scores), Decimal("0"))
    average_amount = total_amount / total_customers

    return SegmentationStats(
        total_customers=total_customers,
        active_customers=sum(1 for s in scores if s.recency_score >= ACTIVE_RECENCY_SCORE),
        average_amount=average_amount,
        vip_customers=sum(1 for s in scores if s.segment in VIP_SEGMENTS),
        segment_distribution=distribution,
    )


def analyze_customer_segments(
    provider: OrderHistoryProvider,
    as_of: datetime | None = None,
) -> SegmentationReport:
    """Fetch purchase facts, score every customer and summarise the result.

    Parameters
    ----------
    provider:
        Order history source; decides which orders and customers qualify.
    as_of:
        Reference time for recency. Defaults to now.
    """
    started = time.perf_counter()
    with tracer.start_as_current_span("analyze_customer_segments") as span:
        facts = provider.fetch_customer_facts()
        scores = calculate_rfm(facts, as_of=as_of)
        stats = summarize_segments(scores)
        span.set_attribute("customers.total", stats.total_customers)
        span.set_attribute("customers.vip", stats.vip_customers)

    duration = time.perf_counter() - started
    record_rfm_duration(duration)
    logger.info(
        "customer_segmentation_complete",
        total_customers=stats.total_customers,
        active_customers=stats.active_customers,
        vip_customers=stats.vip_customers,
        duration_seconds=round(duration, 4),
    )
    return SegmentationReport(customers=scores, stats=stats)
