"""Pandas DataFrame adapters for back-office segmentation."""

from .rfm import (
    facts_to_dataframe,
    dataframe_to_facts,
    rfm_scores_to_dataframe,
    calculate_rfm_df,
    segment_summary_df,
)

__all__ = [
    "facts_to_dataframe",
    "dataframe_to_facts",
    "rfm_scores_to_dataframe",
    "calculate_rfm_df",
    "segment_summary_df",
]
