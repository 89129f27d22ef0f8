"""Pandas DataFrame adapters for RFM segmentation."""

from typing import List, Optional, Sequence
from datetime import datetime
import pandas as pd  # type: ignore

from retail_backoffice.foundation.rfm import (
    CustomerFact,
    RFMScore,
    SEGMENT_DESCRIPTORS,
    Segment,
    calculate_rfm,
)
from ._utils import decimal_to_float, float_to_decimal

FACT_COLUMNS = [
    "customer_id",
    "customer_name",
    "last_purchase_date",
    "purchase_count",
    "total_amount",
]

SCORE_COLUMNS = FACT_COLUMNS + [
    "recency_days",
    "recency_score",
    "frequency_score",
    "monetary_score",
    "rfm_code",
    "segment",
]


def facts_to_dataframe(facts: Sequence[CustomerFact]) -> pd.DataFrame:
    """Convert customer facts to a pandas DataFrame.

    Args:
        facts: Sequence of CustomerFact objects

    Returns:
        DataFrame with columns: customer_id, customer_name,
        last_purchase_date, purchase_count, total_amount (float)
    """
    if not facts:
        return pd.DataFrame(columns=FACT_COLUMNS)

    rows = [
        {
            "customer_id": f.customer_id,
            "customer_name": f.customer_name,
            "last_purchase_date": f.last_purchase_date,
            "purchase_count": f.purchase_count,
            "total_amount": decimal_to_float(f.total_amount),
        }
        for f in facts
    ]
    return pd.DataFrame(rows, columns=FACT_COLUMNS)


def dataframe_to_facts(
    facts_df: pd.DataFrame,
    customer_id_col: str = "customer_id",
    customer_name_col: str = "customer_name",
    last_purchase_date_col: str = "last_purchase_date",
    purchase_count_col: str = "purchase_count",
    total_amount_col: str = "total_amount",
) -> List[CustomerFact]:
    """Convert a pandas DataFrame to customer facts.

    Args:
        facts_df: DataFrame with one row per customer
        *_col: Column name mappings for flexibility

    Returns:
        List of CustomerFact objects. Null/NaT purchase dates become None
        (never purchased).

    Raises:
        ValueError: If required columns are missing or contain nulls
            (other than last_purchase_date)

    Example:
        >>> facts = dataframe_to_facts(pd.read_csv('customers.csv', parse_dates=['last_purchase_date']))
        >>> scores = calculate_rfm(facts)
    """
    mapping = {
        "customer_id": customer_id_col,
        "customer_name": customer_name_col,
        "last_purchase_date": last_purchase_date_col,
        "purchase_count": purchase_count_col,
        "total_amount": total_amount_col,
    }
    missing_cols = set(mapping.values()) - set(facts_df.columns)
    if missing_cols:
        raise ValueError(f"DataFrame missing required columns: {missing_cols}")

    if facts_df.empty:
        return []

    non_nullable = [col for key, col in mapping.items() if key != "last_purchase_date"]
    null_cols = facts_df[non_nullable].isnull().any()
    if null_cols.any():
        null_col_names = null_cols[null_cols].index.tolist()
        raise ValueError(
            f"Null/NaN values found in columns: {null_col_names}. "
            "Only last_purchase_date may be empty."
        )

    facts = []
    for record in facts_df.to_dict("records"):
        raw_date = record[last_purchase_date_col]
        last_purchase = None if pd.isna(raw_date) else pd.to_datetime(raw_date).to_pydatetime()
        facts.append(
            CustomerFact(
                customer_id=str(record[customer_id_col]),
                customer_name=str(record[customer_name_col]),
                last_purchase_date=last_purchase,
                purchase_count=int(record[purchase_count_col]),
                total_amount=float_to_decimal(float(record[total_amount_col])),
            )
        )
    return facts


def rfm_scores_to_dataframe(scores: Sequence[RFMScore]) -> pd.DataFrame:
    """Convert RFM scores to a DataFrame sorted by customer_id.

    The segment column holds the segment's string value (e.g. "At Risk").
    """
    if not scores:
        return pd.DataFrame(columns=SCORE_COLUMNS)

    rows = [
        {
            "customer_id": s.customer_id,
            "customer_name": s.customer_name,
            "last_purchase_date": s.last_purchase_date,
            "purchase_count": s.purchase_count,
            "total_amount": decimal_to_float(s.total_amount),
            "recency_days": s.recency_days,
            "recency_score": s.recency_score,
            "frequency_score": s.frequency_score,
            "monetary_score": s.monetary_score,
            "rfm_code": s.rfm_code,
            "segment": s.segment.value,
        }
        for s in scores
    ]
    df = pd.DataFrame(rows, columns=SCORE_COLUMNS)
    return df.sort_values("customer_id").reset_index(drop=True)


def calculate_rfm_df(
    facts_df: pd.DataFrame,
    as_of: Optional[datetime] = None,
    **column_mapping: str,
) -> pd.DataFrame:
    """Score a DataFrame of customer facts.

    Convenience function that combines conversion and calculation.

    Args:
        facts_df: DataFrame with one row per customer
        as_of: Reference time for recency (default: now)
        **column_mapping: Column overrides passed to dataframe_to_facts

    Returns:
        DataFrame with the input facts plus scores and segment

    Example:
        >>> scored = calculate_rfm_df(facts_df, datetime(2024, 1, 31))
        >>> at_risk = scored[scored['segment'] == 'At Risk']
    """
    facts = dataframe_to_facts(facts_df, **column_mapping)
    return rfm_scores_to_dataframe(calculate_rfm(facts, as_of=as_of))


def segment_summary_df(scores: Sequence[RFMScore]) -> pd.DataFrame:
    """Summarise scores per segment.

    Returns:
        DataFrame with one row per segment (all eight, zero-filled) and
        columns: segment, label, color_tag, customers, share_pct,
        average_amount
    """
    counts: dict[str, int] = {}
    means: dict[str, float] = {}
    if scores:
        scores_df = rfm_scores_to_dataframe(scores)
        grouped = scores_df.groupby("segment")["total_amount"].agg(["count", "mean"])
        counts = {k: int(v) for k, v in grouped["count"].items()}
        means = {k: float(v) for k, v in grouped["mean"].items()}

    total = len(scores)
    rows = []
    for segment in Segment:
        descriptor = SEGMENT_DESCRIPTORS[segment]
        count = counts.get(segment.value, 0)
        mean = means.get(segment.value, 0.0)
        rows.append(
            {
                "segment": segment.value,
                "label": descriptor.label,
                "color_tag": descriptor.color_tag,
                "customers": count,
                "share_pct": round(count / total * 100, 2) if total else 0.0,
                "average_amount": round(float(mean), 2),
            }
        )
    return pd.DataFrame(rows)
