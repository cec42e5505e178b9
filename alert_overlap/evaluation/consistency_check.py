"""
Cross-view audit run before anything is written.

The grouped views are separate tables that downstream readers join and
compare, so they must tell the same story:
1. Per segment, both + dse_only + prod_only <= n
2. The __OVERALL__ row of each summary equals the sum of the segment rows
3. hourly_distribution summed over hours, plus the rows with no hour,
   reproduces the by-segment totals, alert counts and overlap counts
"""

import logging
from typing import Dict, List

import pandas as pd

from alert_overlap.evaluation.metrics import OVERALL_KEY

logger = logging.getLogger(__name__)


def _overall_matches(view: pd.DataFrame, key_column: str, columns: List[str], name: str) -> List[str]:
    problems = []
    overall = view[view[key_column] == OVERALL_KEY]
    segments = view[view[key_column] != OVERALL_KEY]
    if len(overall) != 1:
        return [f"{name}: expected exactly one {OVERALL_KEY} row, found {len(overall)}"]
    for col in columns:
        expected = int(segments[col].sum())
        actual = int(overall[col].iloc[0])
        if actual != expected:
            problems.append(f"{name}.{col}: {OVERALL_KEY}={actual}, sum of segments={expected}")
    return problems


def check_view_consistency(
    views: Dict[str, pd.DataFrame],
    key_column: str,
    summary_table: str,
    unbucketed: pd.DataFrame,
) -> bool:
    """
    Verify the grouped views agree with each other.

    Args:
        views: output of build_summary_views
        key_column: segment column name in the views
        summary_table: name of the by-segment summary in views
        unbucketed: per-segment counters of rows with a null hour
            (metrics.unbucketed_counts), using hourly column names

    Returns:
        True if consistent

    Raises:
        AssertionError describing every mismatch found
    """
    by_segment = views[summary_table].set_index(key_column)
    overlap = views["summary_alert_overlap"]
    fraud = views["summary_fraud_in_alerts"]
    hourly = views["hourly_distribution"]

    problems: List[str] = []

    # 1. Overlap sets fit inside the segment
    seg_overlap = overlap[overlap[key_column] != OVERALL_KEY]
    too_many = seg_overlap[seg_overlap["both_alerts"] + seg_overlap["dse_only"] + seg_overlap["prod_only"] > seg_overlap["n"]]
    for segment in too_many[key_column]:
        problems.append(f"summary_alert_overlap: overlap counts exceed n for {segment}")

    # 2. Overall rows
    problems += _overall_matches(overlap, key_column, ["n", "both_alerts", "dse_only", "prod_only"], "summary_alert_overlap")
    problems += _overall_matches(
        fraud, key_column, ["alerted_rows", "fraud_both", "fraud_dse_only", "fraud_prod_only"], "summary_fraud_in_alerts"
    )

    # 3. Hours (+ unbucketed rows) roll back up to the segment totals
    hour_cols = [c for c in hourly.columns if c not in (key_column, "hour_of_day_local")]
    rolled = pd.concat([hourly[[key_column, *hour_cols]], unbucketed[[key_column, *hour_cols]]], ignore_index=True)
    rolled = rolled.groupby(key_column)[hour_cols].sum()
    overlap_idx = seg_overlap.set_index(key_column)

    expectations = {
        "rows_total": (by_segment, "rows_total"),
        "dse_alerts_any": (by_segment, "dse_alert_count"),
        "prod_alerts_any": (by_segment, "prod_alert_count"),
        "both_alert_rows": (overlap_idx, "both_alerts"),
        "dse_only_rows": (overlap_idx, "dse_only"),
        "prod_only_rows": (overlap_idx, "prod_only"),
    }
    for segment in by_segment.index:
        for hourly_col, (view, col) in expectations.items():
            expected = int(view.loc[segment, col])
            actual = int(rolled.loc[segment, hourly_col]) if segment in rolled.index else 0
            if actual != expected:
                problems.append(f"hourly_distribution.{hourly_col} for {segment}: {actual} != {col} {expected}")

    if problems:
        msg = "Grouped views are inconsistent:\n" + "\n".join(f"  {p}" for p in problems)
        raise AssertionError(msg)

    logger.info(f"View consistency check passed for {len(by_segment)} segments")
    return True
