"""Tests for RFM pandas adapters."""

import pytest
from datetime import datetime
from decimal import Decimal
import pandas as pd

from retail_backoffice.foundation.rfm import CustomerFact, Segment, calculate_rfm
from retail_backoffice.pandas import (
    facts_to_dataframe,
    dataframe_to_facts,
    rfm_scores_to_dataframe,
    calculate_rfm_df,
    segment_summary_df,
)
from retail_backoffice.pandas._utils import float_to_decimal


def _facts():
    return [
        CustomerFact("C3", "Cat", datetime(2024, 1, 10), 3, Decimal("300.00")),
        CustomerFact("C1", "Amy", datetime(2024, 1, 30), 10, Decimal("1000.00")),
        CustomerFact("C2", "Ben", None, 0, Decimal("0")),
    ]


class TestFactsToDataFrame:
    def test_converts_facts(self):
        df = facts_to_dataframe(_facts())

        assert len(df) == 3
        assert df.iloc[1]["customer_id"] == "C1"
        assert df.iloc[1]["total_amount"] == 1000.0  # Decimal converted to float
        assert df.iloc[1]["purchase_count"] == 10

    def test_empty_input_returns_empty_dataframe(self):
        df = facts_to_dataframe([])

        assert df.empty
        assert list(df.columns) == [
            "customer_id",
            "customer_name",
            "last_purchase_date",
            "purchase_count",
            "total_amount",
        ]


class TestDataFrameToFacts:
    def test_round_trip_preserves_values(self):
        facts = dataframe_to_facts(facts_to_dataframe(_facts()))

        by_id = {f.customer_id: f for f in facts}
        assert by_id["C1"].total_amount == Decimal("1000.00")
        assert by_id["C1"].last_purchase_date == datetime(2024, 1, 30)
        assert by_id["C2"].last_purchase_date is None

    def test_custom_column_names(self):
        df = pd.DataFrame(
            {
                "id": ["X"],
                "name": ["Xavier"],
                "last_order": [pd.Timestamp("2024-01-05")],
                "orders": [2],
                "spend": [19.999],
            }
        )

        (fact,) = dataframe_to_facts(
            df,
            customer_id_col="id",
            customer_name_col="name",
            last_purchase_date_col="last_order",
            purchase_count_col="orders",
            total_amount_col="spend",
        )

        assert fact.customer_id == "X"
        assert fact.total_amount == Decimal("20.00")
        assert fact.last_purchase_date == datetime(2024, 1, 5)

    def test_missing_columns_raise(self):
        with pytest.raises(ValueError, match="missing required columns"):
            dataframe_to_facts(pd.DataFrame({"customer_id": ["C1"]}))

    def test_nulls_outside_purchase_date_raise(self):
        df = facts_to_dataframe(_facts())
        df["purchase_count"] = df["purchase_count"].astype("float")
        df.loc[0, "purchase_count"] = float("nan")

        with pytest.raises(ValueError, match="Null/NaN values found"):
            dataframe_to_facts(df)

    def test_empty_dataframe_gives_no_facts(self):
        assert dataframe_to_facts(facts_to_dataframe([])) == []


class TestRFMScoresToDataFrame:
    def test_sorted_by_customer_id_with_segment_values(self):
        scores = calculate_rfm(_facts(), as_of=datetime(2024, 1, 31))

        df = rfm_scores_to_dataframe(scores)

        assert df["customer_id"].tolist() == ["C1", "C2", "C3"]
        assert df.loc[0, "segment"] == Segment.CHAMPIONS.value
        assert df.loc[1, "recency_score"] == 1
        assert df.loc[0, "rfm_code"] == "544"

    def test_calculate_rfm_df(self):
        scored = calculate_rfm_df(facts_to_dataframe(_facts()), as_of=datetime(2024, 1, 31))

        assert len(scored) == 3
        assert set(scored["segment"]) <= {s.value for s in Segment}


class TestSegmentSummaryDF:
    def test_all_segments_listed(self):
        scores = calculate_rfm(_facts(), as_of=datetime(2024, 1, 31))

        summary = segment_summary_df(scores).set_index("segment")

        assert len(summary) == len(Segment)
        assert summary["customers"].sum() == 3
        assert summary.loc["Champions", "customers"] == 1
        assert summary.loc["Champions", "label"] == "頂級客戶"
        assert summary.loc["Champions", "average_amount"] == 1000.0
        assert summary.loc["Loyal", "customers"] == 0
        assert summary.loc["Loyal", "share_pct"] == 0.0

    def test_empty_scores(self):
        summary = segment_summary_df([])

        assert len(summary) == len(Segment)
        assert summary["customers"].sum() == 0
        assert summary["share_pct"].sum() == 0.0


class TestFloatToDecimal:
    def test_rounds_to_cents(self):
        assert float_to_decimal(123.456) == Decimal("123.46")

    def test_rejects_non_numeric(self):
        with pytest.raises(TypeError):
            float_to_decimal("1.0")
        with pytest.raises(TypeError):
            float_to_decimal(True)
