"""RFM (Recency-Frequency-Monetary) scoring and segmentation.

RFM analysis segments customers based on three dimensions:
- Recency: How many days since the customer's last purchase?
- Frequency: How many qualifying orders have they placed?
- Monetary: How much have they spent in total?

Each dimension is scored 1-5 by rank within the customer population
(5 = best), and the score triple is mapped to one of eight named segments
through an ordered decision table.
"""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Sequence

from retail_backoffice.errors import ValidationFailure

# Recency assigned to customers who never purchased. Anything at or above
# this value always lands in the worst recency bucket.
NEVER_PURCHASED_DAYS = 999_999

MIN_SCORE = 1
MAX_SCORE = 5
MID_SCORE = 3

# Quintile thresholds as (numerator, denominator) so bucket boundaries are
# compared in exact integer arithmetic: percentile >= 4/5, >= 3/5, ...
_THRESHOLDS = ((4, 5), (3, 5), (2, 5), (1, 5))


def quantile_score(
    value: float | int | Decimal,
    values: Sequence[float | int | Decimal],
    reverse: bool = False,
    *,
    assume_sorted: bool = False,
) -> int:
    """Score ``value`` 1-5 by its rank within ``values``.

    The percentile of a value is the share of the population strictly below
    it. With ``reverse=False`` (frequency, monetary) higher percentiles score
    higher; with ``reverse=True`` (recency days) lower percentiles score
    higher.

    Parameters
    ----------
    value:
        Value to score. Expected to be a member of ``values``.
    values:
        Full population the value is ranked against.
    reverse:
        Invert the scoring direction (fewer days since purchase is better).
    assume_sorted:
        Skip sorting when the caller already passes ascending ``values``.

    Returns
    -------
    int
        Score in 1..5. Equal inputs always receive equal scores; a single
        value population scores 3; the never-purchased recency sentinel
        scores 1.

    Examples
    --------
    >>> quantile_score(10, [1, 2, 3, 4, 10])
    5
    >>> quantile_score(1, [1, 2, 3, 4, 10], reverse=True)
    5
    >>> quantile_score(7, [7, 7, 7])
    1
    """
    n = len(values)
    if n == 0:
        return MID_SCORE
    if reverse and value >= NEVER_PURCHASED_DAYS:
        return MIN_SCORE
    if n == 1:
        return MID_SCORE

    ordered = values if assume_sorted else sorted(values)
    below = bisect_left(ordered, value)

    if reverse:
        # percentile <= 0.2 -> 5, <= 0.4 -> 4, <= 0.6 -> 3, <= 0.8 -> 2
        for score, (num, den) in zip((5, 4, 3, 2), reversed(_THRESHOLDS)):
            if below * den <= num * n:
                return score
        return MIN_SCORE

    # percentile >= 0.8 -> 5, >= 0.6 -> 4, >= 0.4 -> 3, >= 0.2 -> 2
    for score, (num, den) in zip((5, 4, 3, 2), _THRESHOLDS):
        if below * den >= num * n:
            return score
    return MIN_SCORE


class Segment(str, Enum):
    """Customer-value segments produced by :func:`classify_segment`."""

    CHAMPIONS = "Champions"
    LOYAL = "Loyal"
    PROMISING = "Promising"
    AT_RISK = "At Risk"
    LOST = "Lost"
    HIBERNATING = "Hibernating"
    POTENTIAL = "Potential"
    NEEDS_ATTENTION = "Needs Attention"


@dataclass(frozen=True)
class SegmentRule:
    """One row of the segmentation decision table."""

    segment: Segment
    predicate: Callable[[int, int, int], bool]
    condition: str

    def matches(self, r: int, f: int, m: int) -> bool:
        return self.predicate(r, f, m)


# Evaluated top to bottom, first match wins. Predicates overlap (e.g. r == 1
# with f <= 2 matches both Lost and Hibernating); the order decides.
SEGMENT_RULES: tuple[SegmentRule, ...] = (
    SegmentRule(
        Segment.CHAMPIONS, lambda r, f, m: r >= 4 and f >= 4 and m >= 4, "r>=4 f>=4 m>=4"
    ),
    SegmentRule(Segment.LOYAL, lambda r, f, m: f >= 4 and m >= 4, "f>=4 m>=4"),
    SegmentRule(Segment.PROMISING, lambda r, f, m: r >= 4 and f <= 2, "r>=4 f<=2"),
    SegmentRule(
        Segment.AT_RISK, lambda r, f, m: r <= 2 and f >= 3 and m >= 3, "r<=2 f>=3 m>=3"
    ),
    SegmentRule(Segment.LOST, lambda r, f, m: r == 1, "r==1"),
    SegmentRule(Segment.HIBERNATING, lambda r, f, m: r <= 2 and f <= 2, "r<=2 f<=2"),
    SegmentRule(
        Segment.POTENTIAL, lambda r, f, m: r >= 3 and f >= 2 and m >= 2, "r>=3 f>=2 m>=2"
    ),
    SegmentRule(Segment.NEEDS_ATTENTION, lambda r, f, m: True, "otherwise"),
)


def _validate_score(name: str, value: int) -> None:
    # bool is an int subclass but never a valid score
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailure(f"{name} must be an integer score: {value!r}")
    if not MIN_SCORE <= value <= MAX_SCORE:
        raise ValidationFailure(f"{name} must be between 1 and 5: {value}")


def classify_segment(r: int, f: int, m: int) -> Segment:
    """Map an (R, F, M) score triple to its segment.

    Raises
    ------
    ValidationFailure
        If any score is not an integer in 1..5.

    Examples
    --------
    >>> classify_segment(5, 5, 5).value
    'Champions'
    >>> classify_segment(1, 1, 1).value
    'Lost'
    """
    _validate_score("recency_score", r)
    _validate_score("frequency_score", f)
    _validate_score("monetary_score", m)
    for rule in SEGMENT_RULES:
        if rule.matches(r, f, m):
            return rule.segment
    raise AssertionError("segment table has no fallback rule")  # pragma: no cover


@dataclass(frozen=True)
class SegmentDescriptor:
    """Display metadata for a segment.

    Attributes
    ----------
    label:
        Localised (zh-TW) display name
    description:
        Short explanation of the segment
    color_tag:
        Colour hint for the host UI
    """

    label: str
    description: str
    color_tag: str


SEGMENT_DESCRIPTORS: Mapping[Segment, SegmentDescriptor] = MappingProxyType(
    {
        Segment.CHAMPIONS: SegmentDescriptor("頂級客戶", "最近購買、購買頻繁、消費金額高", "green"),
        Segment.LOYAL: SegmentDescriptor("忠誠客戶", "購買頻繁、消費金額高", "blue"),
        Segment.PROMISING: SegmentDescriptor("潛力客戶", "最近購買但次數少", "purple"),
        Segment.POTENTIAL: SegmentDescriptor("有潛力客戶", "中等表現客戶", "indigo"),
        Segment.AT_RISK: SegmentDescriptor("流失風險", "曾是好客戶但很久沒來", "orange"),
        Segment.HIBERNATING: SegmentDescriptor("休眠客戶", "很久沒購買且次數少", "gray"),
        Segment.LOST: SegmentDescriptor("已流失客戶", "極久未購買", "red"),
        Segment.NEEDS_ATTENTION: SegmentDescriptor("需要關注", "表現一般需要提升", "yellow"),
    }
)


def describe_segment(segment: Segment | str) -> SegmentDescriptor:
    """Return the descriptor for a segment or its string value."""
    return SEGMENT_DESCRIPTORS[Segment(segment)]


@dataclass(frozen=True)
class CustomerFact:
    """Purchase facts for one customer, as supplied by the order history.

    Attributes
    ----------
    customer_id:
        Opaque customer identifier
    customer_name:
        Display name
    last_purchase_date:
        Timestamp of the latest qualifying order; None if never purchased
    purchase_count:
        Number of qualifying orders
    total_amount:
        Sum of qualifying order totals
    """

    customer_id: str
    customer_name: str
    last_purchase_date: datetime | None
    purchase_count: int
    total_amount: Decimal = field(default=Decimal("0"))


@dataclass(frozen=True)
class RFMScore:
    """Scored and segmented customer.

    Carries the input facts plus the recency in days, the three 1-5 scores
    and the resulting segment.
    """

    customer_id: str
    customer_name: str
    last_purchase_date: datetime | None
    purchase_count: int
    total_amount: Decimal
    recency_days: int
    recency_score: int
    frequency_score: int
    monetary_score: int
    segment: Segment

    def __post_init__(self) -> None:
        """Validate RFM scores."""
        for score_name, score_value in [
            ("recency_score", self.recency_score),
            ("frequency_score", self.frequency_score),
            ("monetary_score", self.monetary_score),
        ]:
            if not MIN_SCORE <= score_value <= MAX_SCORE:
                raise ValueError(
                    f"{score_name} must be between 1 and 5: {score_value} (customer_id={self.customer_id})"
                )

    @property
    def rfm_code(self) -> str:
        """Combined score string, e.g. "555" for the best customers."""
        return f"{self.recency_score}{self.frequency_score}{self.monetary_score}"

    @property
    def descriptor(self) -> SegmentDescriptor:
        return SEGMENT_DESCRIPTORS[self.segment]


def reference_time(sample: datetime | None = None) -> datetime:
    """Current time in the same awareness as ``sample``.

    Naive datetimes are treated as UTC, the way order timestamps are stored.
    """
    now = datetime.now(timezone.utc)
    if sample is not None and sample.tzinfo is not None:
        return now.astimezone(sample.tzinfo)
    return now.replace(tzinfo=None)


def recency_days_for(last_purchase_date: datetime | None, as_of: datetime | None = None) -> int:
    """Whole days between ``last_purchase_date`` and ``as_of``.

    Never-purchased customers get :data:`NEVER_PURCHASED_DAYS`. When
    ``as_of`` is omitted the current time is used (naive UTC for naive
    dates).
    """
    if last_purchase_date is None:
        return NEVER_PURCHASED_DAYS
    if as_of is None:
        as_of = reference_time(last_purchase_date)
    return (as_of - last_purchase_date).days


def calculate_rfm(
    facts: Sequence[CustomerFact],
    as_of: datetime | None = None,
) -> list[RFMScore]:
    """Score and segment a customer population.

    **Timezone Assumptions**: ``as_of`` and every ``last_purchase_date``
    must all be timezone-aware or all naive.

    Parameters
    ----------
    facts:
        One fact per customer. Order is irrelevant.
    as_of:
        Reference time for recency. Defaults to the current UTC time,
        shared by every fact.

    Returns
    -------
    list[RFMScore]
        One score per fact. Callers must not rely on the output order.

    Examples
    --------
    >>> from datetime import datetime
    >>> from decimal import Decimal
    >>> facts = [
    ...     CustomerFact("C1", "Amy", datetime(2024, 1, 10), 8, Decimal("900")),
    ...     CustomerFact("C2", "Ben", None, 0, Decimal("0")),
    ... ]
    >>> scores = calculate_rfm(facts, as_of=datetime(2024, 1, 15))
    >>> [s.recency_score for s in scores]
    [5, 1]
    """
    if not facts:
        return []

    if as_of is None:
        # One reference time for the whole population
        sample = next((f.last_purchase_date for f in facts if f.last_purchase_date), None)
        as_of = reference_time(sample)

    recency =[recency_days_for(f.last_purchase_date, as_of) for f in facts]
    frequency = [f.purchase_count for f in facts]
    monetary = [f.total_amount for f in facts]

    recency_sorted = sorted(recency)
    frequency_sorted = sorted(frequency)
    monetary_sorted = sorted(monetary)

    scores: list[RFMScore] = []
    for fact, days in zip(facts, recency):
        r = quantile_score(days, recency_sorted, reverse=True, assume_sorted=True)
        f = quantile_score(fact.purchase_count, frequency_sorted, assume_sorted=True)
        m = quantile_score(fact.total_amount, monetary_sorted, assume_sorted=True)
        scores.append(
            RFMScore(
                customer_id=fact.customer_id,
                customer_name=fact.customer_name,
                last_purchase_date=fact.last_purchase_date,
                purchase_count=fact.purchase_count,
                total_amount=fact.total_amount,
                recency_days=days,
                recency_score=r,
                frequency_score=f,
                monetary_score=m,
                segment=classify_segment(r, f, m),
            )
        )
    return scores
