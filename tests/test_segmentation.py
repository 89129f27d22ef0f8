"""Tests for the customer segmentation report."""

from datetime import datetime
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY

from retail_backoffice.analyses.segmentation import (
    SegmentationStats,
    analyze_customer_segments,
    summarize_segments,
)
from retail_backoffice.foundation.customer_facts import CustomerFactBuilder
from retail_backoffice.foundation.rfm import CustomerFact, Segment, calculate_rfm


class _StaticProvider:
    def __init__(self, facts):
        self.facts = facts

    def fetch_customer_facts(self):
        return list(self.facts)


@pytest.fixture
def facts():
    return [
        CustomerFact("A", "Amy", datetime(2024, 1, 30), 10, Decimal("1000")),
        CustomerFact("B", "Ben", datetime(2024, 1, 25), 6, Decimal("600")),
        CustomerFact("C", "Cat", datetime(2024, 1, 10), 3, Decimal("300")),
        CustomerFact("D", "Dan", datetime(2023, 12, 1), 2, Decimal("200")),
        CustomerFact("E", "Eve", None, 0, Decimal("0")),
    ]


class TestSummarizeSegments:
    def test_empty_population(self):
        stats = summarize_segments([])

        assert stats.total_customers == 0
        assert stats.active_customers == 0
        assert stats.vip_customers == 0
        assert stats.average_amount == Decimal("0")
        assert stats.segment_distribution == {segment: 0 for segment in Segment}

    def test_population_aggregates(self, facts, as_of):
        stats = summarize_segments(calculate_rfm(facts, as_of=as_of))

        assert stats.total_customers == 5
        assert stats.active_customers == 4  # recency score >= 3
        assert stats.vip_customers == 2  # Champions or Loyal
        assert stats.average_amount == Decimal("420.00")
        assert stats.segment_distribution[Segment.CHAMPIONS] == 2
        assert stats.segment_distribution[Segment.POTENTIAL] == 2
        assert stats.segment_distribution[Segment.LOST] == 1
        assert sum(stats.segment_distribution.values()) == 5
        assert set(stats.segment_distribution) == set(Segment)

    def test_average_is_unrounded_mean(self, as_of):
        facts = [
            CustomerFact("A", "Amy", datetime(2024, 1, 1), 1, Decimal("0.01")),
            CustomerFact("B", "Ben", datetime(2024, 1, 1), 1, Decimal("0.02")),
        ]
        stats = summarize_segments(calculate_rfm(facts, as_of=as_of))
        assert stats.average_amount == Decimal("0.015")

    def test_invalid_stats_rejected(self):
        with pytest.raises(ValueError, match="Active customers"):
            SegmentationStats(
                total_customers=1,
                active_customers=2,
                average_amount=Decimal("0"),
                vip_customers=0,
            )


class TestAnalyzeCustomerSegments:
    def test_report_from_provider(self, facts, as_of):
        report = analyze_customer_segments(_StaticProvider(facts), as_of=as_of)

        assert len(report.customers) == 5
        assert report.stats.total_customers == 5
        assert {s.customer_id for s in report.customers} == set("ABCDE")

    def test_records_duration_metric(self, facts, as_of):
        metric = "backoffice_rfm_analysis_duration_seconds_count"
        before = REGISTRY.get_sample_value(metric) or 0.0

        analyze_customer_segments(_StaticProvider(facts), as_of=as_of)

        assert REGISTRY.get_sample_value(metric) == before + 1

    def test_inactive_customers_excluded(self, as_of):
        provider = CustomerFactBuilder.from_records(
            customers=[
                {"customer_id": "C1", "name": "Amy"},
                {"customer_id": "C2", "name": "Ben", "is_active": False},
            ],
            orders=[
                {
                    "order_id": "O1",
                    "customer_id": "C2",
                    "status": "COMPLETED",
                    "total_amount": "80",
                    "created_at": datetime(2024, 1, 20),
                }
            ],
        )

        report = analyze_customer_segments(provider, as_of=as_of)

        assert [s.customer_id for s in report.customers] == ["C1"]
        assert report.customers[0].recency_score == 1
        assert report.stats.average_amount == Decimal("0.00")
