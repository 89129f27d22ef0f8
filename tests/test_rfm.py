"""Tests for RFM scoring, segment classification and aggregation."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import product

import pytest

_hyp = pytest.importorskip("hypothesis")
from hypothesis import given
from hypothesis import strategies as st

from retail_backoffice.errors import ValidationFailure
from retail_backoffice.foundation.rfm import (
    NEVER_PURCHASED_DAYS,
    SEGMENT_DESCRIPTORS,
    SEGMENT_RULES,
    CustomerFact,
    RFMScore,
    Segment,
    calculate_rfm,
    classify_segment,
    describe_segment,
    quantile_score,
    recency_days_for,
)


class TestQuantileScore:
    """Test quintile bucketing of a value within its population."""

    def test_empty_population_scores_middle(self):
        assert quantile_score(10, []) == 3

    def test_single_value_population_scores_middle(self):
        assert quantile_score(10, [10]) == 3
        assert quantile_score(10, [10], reverse=True) == 3

    def test_ascending_population(self):
        """Higher values score higher; the bottom 20% boundary scores 2."""
        values = [1, 2, 3, 4, 10]
        assert [quantile_score(v, values) for v in values] == [1, 2, 3, 4, 5]

    def test_reverse_population(self):
        """Lower values score higher; percentile 0.2 still scores 5."""
        values = [1, 2, 3, 4, 10]
        assert [quantile_score(v, values, reverse=True) for v in values] == [5, 5, 4, 3, 2]

    def test_exact_threshold_boundaries(self):
        """Percentiles exactly on 0.8 / 0.2 land in the higher bucket."""
        values = list(range(10))
        assert quantile_score(8, values) == 5  # 8/10 below
        assert quantile_score(7, values) == 4
        assert quantile_score(2, values) == 2  # 2/10 below
        assert quantile_score(1, values) == 1

    def test_all_equal_values_score_equal(self):
        values = [7, 7, 7]
        assert {quantile_score(v, values) for v in values} == {1}
        assert {quantile_score(v, values, reverse=True) for v in values} == {5}

    def test_never_purchased_sentinel_scores_lowest(self):
        values = [NEVER_PURCHASED_DAYS, NEVER_PURCHASED_DAYS]
        assert quantile_score(NEVER_PURCHASED_DAYS, values, reverse=True) == 1
        assert quantile_score(NEVER_PURCHASED_DAYS, [NEVER_PURCHASED_DAYS], reverse=True) == 1

    def test_decimal_values(self):
        values = [Decimal("10.50"), Decimal("99.99"), Decimal("0")]
        # 2 of 3 values below the top one: percentile 2/3 lands in the >= 0.6 band
        assert quantile_score(Decimal("99.99"), values) == 4
        assert quantile_score(Decimal("0"), values) == 1

    def test_assume_sorted_matches_sorting(self):
        values = [5, 1, 4, 2, 3]
        ordered = sorted(values)
        for v in values:
            assert quantile_score(v, ordered, assume_sorted=True) == quantile_score(v, values)

    @given(st.lists(st.integers(min_value=0, max_value=1000), min_size=1), st.data())
    def test_score_always_in_range(self, values, data):
        value = data.draw(st.sampled_from(values))
        assert 1 <= quantile_score(value, values) <= 5
        assert 1 <= quantile_score(value, values, reverse=True) <= 5

    @given(st.lists(st.integers(min_value=0, max_value=1000), min_size=2), st.data())
    def test_score_is_monotonic(self, values, data):
        a = data.draw(st.sampled_from(values))
        b = data.draw(st.sampled_from(values))
        low, high = min(a, b), max(a, b)
        assert quantile_score(low, values) <= quantile_score(high, values)
        assert quantile_score(low, values, reverse=True) >= quantile_score(
            high, values, reverse=True
        )


def _expected_segment(r, f, m):
    if r >= 4 and f >= 4 and m >= 4:
        return Segment.CHAMPIONS
    if f >= 4 and m >= 4:
        return Segment.LOYAL
    if r >= 4 and f <= 2:
        return Segment.PROMISING
    if r <= 2 and f >= 3 and m >= 3:
        return Segment.AT_RISK
    if r == 1:
        return Segment.LOST
    if r <= 2 and f <= 2:
        return Segment.HIBERNATING
    if r >= 3 and f >= 2 and m >= 2:
        return Segment.POTENTIAL
    return Segment.NEEDS_ATTENTION


class TestClassifySegment:
    """Test the ordered segment decision table."""

    @pytest.mark.parametrize(
        "scores, expected",
        [
            ((5, 5, 5), Segment.CHAMPIONS),
            ((4, 4, 4), Segment.CHAMPIONS),
            ((3, 4, 4), Segment.LOYAL),
            ((1, 5, 5), Segment.LOYAL),  # Loyal is checked before At Risk
            ((5, 1, 1), Segment.PROMISING),
            ((4, 2, 5), Segment.PROMISING),
            ((2, 3, 3), Segment.AT_RISK),
            ((1, 3, 3), Segment.AT_RISK),  # At Risk is checked before Lost
            ((1, 2, 1), Segment.LOST),  # Lost is checked before Hibernating
            ((1, 3, 2), Segment.LOST),
            ((2, 2, 5), Segment.HIBERNATING),
            ((2, 1, 1), Segment.HIBERNATING),
            ((3, 2, 2), Segment.POTENTIAL),
            ((4, 4, 3), Segment.POTENTIAL),
            ((3, 1, 5), Segment.NEEDS_ATTENTION),
            ((2, 3, 2), Segment.NEEDS_ATTENTION),
            ((3, 3, 1), Segment.NEEDS_ATTENTION),
        ],
    )
    def test_known_combinations(self, scores, expected):
        assert classify_segment(*scores) is expected

    def test_all_125_combinations(self):
        for r, f, m in product(range(1, 6), repeat=3):
            assert classify_segment(r, f, m) is _expected_segment(r, f, m), (r, f, m)

    def test_every_segment_reachable(self):
        reached = {classify_segment(r, f, m) for r, f, m in product(range(1, 6), repeat=3)}
        assert reached == set(Segment)

    def test_rule_table_order(self):
        assert [rule.segment for rule in SEGMENT_RULES] == [
            Segment.CHAMPIONS,
            Segment.LOYAL,
            Segment.PROMISING,
            Segment.AT_RISK,
            Segment.LOST,
            Segment.HIBERNATING,
            Segment.POTENTIAL,
            Segment.NEEDS_ATTENTION,
        ]

    @pytest.mark.parametrize("bad", [0, 6, -1, 2.5, "3", None, True])
    def test_invalid_score_raises(self, bad):
        with pytest.raises(ValidationFailure):
            classify_segment(bad, 3, 3)
        with pytest.raises(ValueError):
            classify_segment(3, 3, bad)


class TestSegmentDescriptors:
    def test_every_segment_has_descriptor(self):
        assert set(SEGMENT_DESCRIPTORS) == set(Segment)

    def test_champions_descriptor(self):
        descriptor = SEGMENT_DESCRIPTORS[Segment.CHAMPIONS]
        assert descriptor.label == "頂級客戶"
        assert descriptor.color_tag == "green"

    def test_describe_by_value(self):
        assert describe_segment("Lost") is SEGMENT_DESCRIPTORS[Segment.LOST]
        assert describe_segment("Lost").color_tag == "red"

    def test_descriptors_are_read_only(self):
        with pytest.raises(TypeError):
            SEGMENT_DESCRIPTORS[Segment.LOST] = SEGMENT_DESCRIPTORS[Segment.LOYAL]


class TestRecencyDays:
    def test_never_purchased(self):
        assert recency_days_for(None, datetime(2024, 1, 1)) == NEVER_PURCHASED_DAYS

    def test_partial_days_are_floored(self):
        last = datetime(2024, 1, 1, 12, 0)
        assert recency_days_for(last, last + timedelta(days=1, hours=23)) == 1
        assert recency_days_for(last, last + timedelta(hours=23)) == 0

    def test_defaults_to_now_with_matching_awareness(self):
        last = datetime.now(timezone.utc) - timedelta(days=3, hours=1)
        assert recency_days_for(last) == 3

    def test_naive_dates_default_to_utc_now(self, non_utc_timezone):
        utc_now = datetime.now(timezone.utc).replace(tzinfo=None)

        assert recency_days_for(utc_now - timedelta(hours=1)) == 0
        assert recency_days_for(utc_now - timedelta(hours=20)) == 0
        assert recency_days_for(utc_now - timedelta(days=2, hours=1)) == 2

    def test_calculate_rfm_defaults_to_utc_now(self, non_utc_timezone):
        utc_now = datetime.now(timezone.utc).replace(tzinfo=None)
        facts = [
            CustomerFact("A", "Amy", utc_now - timedelta(hours=1), 1, Decimal("10")),
            CustomerFact("B", "Ben", None, 0, Decimal("0")),
            CustomerFact("C", "Cat", utc_now - timedelta(days=3, hours=20), 2, Decimal("20")),
        ]

        days = {s.customer_id: s.recency_days for s in calculate_rfm(facts)}

        assert days == {"A": 0, "B": NEVER_PURCHASED_DAYS, "C": 3}


class TestRFMScore:
    def test_out_of_range_score_raises(self):
        with pytest.raises(ValueError, match="recency_score must be between 1 and 5"):
            RFMScore("C1", "Amy", None, 0, Decimal("0"), NEVER_PURCHASED_DAYS, 0, 3, 3, Segment.LOST)

    def test_rfm_code_and_descriptor(self):
        score = RFMScore(
            "C1", "Amy", datetime(2024, 1, 1), 3, Decimal("10"), 5, 5, 4, 3, Segment.POTENTIAL
        )
        assert score.rfm_code == "543"
        assert score.descriptor.label == "有潛力客戶"


def _population():
    return [
        CustomerFact("A", "Amy", datetime(2024, 1, 30), 10, Decimal("1000")),
        CustomerFact("B", "Ben", datetime(2024, 1, 25), 6, Decimal("600")),
        CustomerFact("C", "Cat", datetime(2024, 1, 10), 3, Decimal("300")),
        CustomerFact("D", "Dan", datetime(2023, 12, 1), 2, Decimal("200")),
        CustomerFact("E", "Eve", None, 0, Decimal("0")),
    ]


class TestCalculateRFM:
    """Test scoring a full customer population."""

    def test_empty_population(self):
        assert calculate_rfm([]) == []

    def test_single_customer_scores_middle(self, as_of):
        facts = [CustomerFact("A", "Amy", datetime(2024, 1, 20), 2, Decimal("50"))]
        (score,) = calculate_rfm(facts, as_of=as_of)
        assert (score.recency_score, score.frequency_score, score.monetary_score) == (3, 3, 3)
        assert score.recency_days == 11
        assert score.segment is Segment.POTENTIAL

    def test_single_never_purchased_customer(self, as_of):
        (score,) = calculate_rfm([CustomerFact("A", "Amy", None, 0)], as_of=as_of)
        assert score.recency_days == NEVER_PURCHASED_DAYS
        assert score.recency_score == 1

    def test_population_scores(self, as_of):
        scores = {s.customer_id: s for s in calculate_rfm(_population(), as_of=as_of)}

        assert [scores[c].rfm_code for c in "ABCDE"] == ["555", "544", "433", "322", "111"]
        assert scores["A"].segment is Segment.CHAMPIONS
        assert scores["B"].segment is Segment.CHAMPIONS
        assert scores["C"].segment is Segment.POTENTIAL
        assert scores["D"].segment is Segment.POTENTIAL
        assert scores["E"].segment is Segment.LOST
        assert scores["A"].recency_days == 1
        assert scores["E"].total_amount == Decimal("0")

    def test_one_score_per_customer(self, as_of):
        facts = _population()
        scores = calculate_rfm(facts, as_of=as_of)
        assert sorted(s.customer_id for s in scores) == sorted(f.customer_id for f in facts)

    def test_identical_customers_score_identically(self, as_of):
        facts = [
            CustomerFact(cid, cid, datetime(2024, 1, 15), 4, Decimal("120")) for cid in "XYZ"
        ] + _population()
        scores = {s.customer_id: s.rfm_code for s in calculate_rfm(facts, as_of=as_of)}
        assert scores["X"] == scores["Y"] == scores["Z"]

    def test_scores_independent_of_input_order(self, as_of):
        forward = {s.customer_id: s for s in calculate_rfm(_population(), as_of=as_of)}
        backward = {s.customer_id: s for s in calculate_rfm(_population()[::-1], as_of=as_of)}
        assert forward == backward

    @given(
        st.lists(
            st.tuples(
                st.one_of(st.none(), st.integers(min_value=0, max_value=3650)),
                st.integers(min_value=0, max_value=50),
                st.integers(min_value=0, max_value=100_000),
            ),
            max_size=30,
        )
    )
    def test_population_properties(self, rows):
        as_of = datetime(2024, 6, 30)
        facts = [
            CustomerFact(
                f"C{i}",
                f"Customer {i}",
                None if days is None else as_of - timedelta(days=days),
                count,
                Decimal(amount) / 100,
            )
            for i, (days, count, amount) in enumerate(rows)
        ]
        scores = calculate_rfm(facts, as_of=as_of)

        assert len(scores) == len(facts)
        for score in scores:
            assert score.segment is classify_segment(
                score.recency_score, score.frequency_score, score.monetary_score
            )
            if score.last_purchase_date is None:
                assert score.recency_score == 1
