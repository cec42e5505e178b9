"""
Grouped Alert Metrics

Four views over the same analysis rows:
- summary_by_<segment>:     rows, alerts and fraud-in-alert per pipeline
- summary_alert_overlap:    both / DSE only / PROD only, share of all rows
- summary_fraud_in_alerts:  fraud inside each overlap set, share of alerted rows
- hourly_distribution:      everything above per (segment, local hour)

How it is computed:
    Each shard is reduced to a partial count table keyed by
    (segment_key, hour_of_day_local), keeping the null hour as its own group.
    Partial tables are merged with a grouped sum, which is associative and
    commutative, so the number of shards never changes the result.
    All four views are then rolled up from the one merged table, which is
    why they always agree with each other.

Ratio Policy:
    A ratio over an empty group is null, never 0 and never a division error.
    0 would read as "measured exactly zero".
"""

from typing import Dict, Iterable, List

import pandas as pd

from alert_overlap.evaluation.alert_policy import (
    BOTH_ALERT,
    DSE_ALERT,
    DSE_ONLY_ALERT,
    PROD_ALERT,
    PROD_ONLY_ALERT,
)
from alert_overlap.features.enrichment import IS_FRAUD
from alert_overlap.features.time_utils import HOUR_OF_DAY_LOCAL
from alert_overlap.ingestion.segment_filter import SEGMENT_KEY

OVERALL_KEY = "__OVERALL__"

GROUP_KEYS = [SEGMENT_KEY, HOUR_OF_DAY_LOCAL]

# Counters kept per (segment, hour)
ROWS_TOTAL = "rows_total"
ALERTED_ROWS = "alerted_rows"
DSE_ALERT_COUNT = "dse_alert_count"
DSE_FRAUD_IN_ALERT = "dse_fraud_in_alert"
PROD_ALERT_COUNT = "prod_alert_count"
PROD_FRAUD_IN_ALERT = "prod_fraud_in_alert"
BOTH_ALERTS = "both_alerts"
DSE_ONLY = "dse_only"
PROD_ONLY = "prod_only"
FRAUD_BOTH = "fraud_both"
FRAUD_DSE_ONLY = "fraud_dse_only"
FRAUD_PROD_ONLY = "fraud_prod_only"

COUNTERS = [
    ROWS_TOTAL, ALERTED_ROWS,
    DSE_ALERT_COUNT, DSE_FRAUD_IN_ALERT,
    PROD_ALERT_COUNT, PROD_FRAUD_IN_ALERT,
    BOTH_ALERTS, DSE_ONLY, PROD_ONLY,
    FRAUD_BOTH, FRAUD_DSE_ONLY, FRAUD_PROD_ONLY,
]

# hourly_distribution column names for the shared counters
HOURLY_COLUMNS = {
    ROWS_TOTAL: "rows_total",
    BOTH_ALERTS: "both_alert_rows",
    DSE_ONLY: "dse_only_rows",
    PROD_ONLY: "prod_only_rows",
    FRAUD_BOTH: "fraud_in_both",
    FRAUD_DSE_ONLY: "fraud_in_dse_only",
    FRAUD_PROD_ONLY: "fraud_in_prod_only",
    DSE_ALERT_COUNT: "dse_alerts_any",
    PROD_ALERT_COUNT: "prod_alerts_any",
}


def safe_divide(numerator: pd.Series, denominator: pd.Series) -> pd.Series:
    """numerator / denominator as nullable Float64, <NA> where denominator is 0."""
    num = numerator.astype("float64")
    den = denominator.astype("float64")
    return (num / den.where(den != 0)).astype("Float64")


def _empty_counts() -> pd.DataFrame:
    df = pd.DataFrame({
        SEGMENT_KEY: pd.Series(dtype="object"),
        HOUR_OF_DAY_LOCAL: pd.Series(dtype="Int64"),
    })
    for col in COUNTERS:
        df[col] = pd.Series(dtype="int64")
    return df


def _typed(counts: pd.DataFrame) -> pd.DataFrame:
    counts = counts.copy()
    counts[HOUR_OF_DAY_LOCAL] = counts[HOUR_OF_DAY_LOCAL].astype("Int64")
    counts[COUNTERS] = counts[COUNTERS].astype("int64")
    return counts


def partial_counts(rows: pd.DataFrame) -> pd.DataFrame:
    """
    Reduce analysis rows to counters per (segment_key, hour_of_day_local).

    Rows with a null hour form their own group so that non-hourly views
    still count them.
    """
    if rows.empty:
        return _empty_counts()

    fraud = rows[IS_FRAUD].astype(bool)
    dse = rows[DSE_ALERT].astype(bool)
    prod = rows[PROD_ALERT].astype(bool)
    both = rows[BOTH_ALERT].astype(bool)
    dse_only = rows[DSE_ONLY_ALERT].astype(bool)
    prod_only = rows[PROD_ONLY_ALERT].astype(bool)

    indicators = pd.DataFrame({
        SEGMENT_KEY: rows[SEGMENT_KEY],
        HOUR_OF_DAY_LOCAL: rows[HOUR_OF_DAY_LOCAL],
        ROWS_TOTAL: 1,
        ALERTED_ROWS: dse | prod,
        DSE_ALERT_COUNT: dse,
        DSE_FRAUD_IN_ALERT: dse & fraud,
        PROD_ALERT_COUNT: prod,
        PROD_FRAUD_IN_ALERT: prod & fraud,
        BOTH_ALERTS: both,
        DSE_ONLY: dse_only,
        PROD_ONLY: prod_only,
        FRAUD_BOTH: both & fraud,
        FRAUD_DSE_ONLY: dse_only & fraud,
        FRAUD_PROD_ONLY: prod_only & fraud,
    })
    indicators[COUNTERS] = indicators[COUNTERS].astype("int64")

    counts = indicators.groupby(GROUP_KEYS, dropna=False, sort=True)[COUNTERS].sum().reset_index()
    return _typed(counts)


def merge_partial_counts(partials: Iterable[pd.DataFrame]) -> pd.DataFrame:
    """Combine per-shard count tables. Order of partials does not matter."""
    partials = [p for p in partials if not p.empty]
    if not partials:
        return _empty_counts()

    stacked = pd.concat(partials, ignore_index=True)
    merged = stacked.groupby(GROUP_KEYS, dropna=False, sort=True)[COUNTERS].sum().reset_index()
    return _typed(merged)


def _per_segment(counts: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    per_segment = counts.groupby(SEGMENT_KEY, sort=True)[columns].sum().reset_index()
    per_segment[columns] = per_segment[columns].astype("int64")
    return per_segment


def _with_overall(per_segment: pd.DataFrame, key_column: str, columns: List[str]) -> pd.DataFrame:
    """Prepend the __OVERALL__ row (counts summed across segments)."""
    totals = per_segment[columns].sum()
    overall = pd.DataFrame([{key_column: OVERALL_KEY, **{c: int(totals[c]) for c in columns}}])
    out = pd.concat([overall, per_segment], ignore_index=True)
    out[columns] = out[columns].astype("int64")
    return out


def summary_by_segment(counts: pd.DataFrame, key_column: str) -> pd.DataFrame:
    """Per segment: rows_total, alert count and fraud-in-alert for DSE and PROD."""
    columns = [ROWS_TOTAL, DSE_ALERT_COUNT, DSE_FRAUD_IN_ALERT, PROD_ALERT_COUNT, PROD_FRAUD_IN_ALERT]
    out = _per_segment(counts, columns).rename(columns={SEGMENT_KEY: key_column})
    return out[[key_column, *columns]]


def summary_alert_overlap(counts: pd.DataFrame, key_column: str) -> pd.DataFrame:
    """
    Overlap sets per segment plus __OVERALL__, with each set's share of
    the group's rows. Overall ratios are recomputed from summed counts.
    """
    per_segment = _per_segment(counts, [ROWS_TOTAL, BOTH_ALERTS, DSE_ONLY, PROD_ONLY])
    per_segment = per_segment.rename(columns={SEGMENT_KEY: key_column, ROWS_TOTAL: "n"})

    out = _with_overall(per_segment, key_column, ["n", BOTH_ALERTS, DSE_ONLY, PROD_ONLY])
    out["pct_both_over_all"] = safe_divide(out[BOTH_ALERTS], out["n"])
    out["pct_dse_only_over_all"] = safe_divide(out[DSE_ONLY], out["n"])
    out["pct_prod_only_over_all"] = safe_divide(out[PROD_ONLY], out["n"])
    return out


def summary_fraud_in_alerts(counts: pd.DataFrame, key_column: str) -> pd.DataFrame:
    """
    Fraud inside each overlap set, over rows where at least one pipeline
    alerted. A segment with no alerted rows still gets a row: zero counts,
    null ratios.
    """
    columns = [ALERTED_ROWS, FRAUD_BOTH, FRAUD_DSE_ONLY, FRAUD_PROD_ONLY]
    per_segment = _per_segment(counts, columns).rename(columns={SEGMENT_KEY: key_column})

    out = _with_overall(per_segment, key_column, columns)
    out["pct_fraud_both_over_alerted"] = safe_divide(out[FRAUD_BOTH], out[ALERTED_ROWS])
    out["pct_fraud_dse_only_over_alerted"] = safe_divide(out[FRAUD_DSE_ONLY], out[ALERTED_ROWS])
    out["pct_fraud_prod_only_over_alerted"] = safe_divide(out[FRAUD_PROD_ONLY], out[ALERTED_ROWS])
    return out


def hourly_distribution(counts: pd.DataFrame, key_column: str) -> pd.DataFrame:
    """
    Counters per (segment, local hour), ordered by segment then hour.
    Rows whose timestamp could not be parsed (null hour) are left out here
    and only here.
    """
    bucketed = counts[counts[HOUR_OF_DAY_LOCAL].notna()].copy()
    bucketed[HOUR_OF_DAY_LOCAL] = bucketed[HOUR_OF_DAY_LOCAL].astype("int64")

    out = bucketed[[SEGMENT_KEY, HOUR_OF_DAY_LOCAL, *HOURLY_COLUMNS]].rename(
        columns={SEGMENT_KEY: key_column, **HOURLY_COLUMNS}
    )
    return out.sort_values([key_column, HOUR_OF_DAY_LOCAL]).reset_index(drop=True)


def unbucketed_counts(counts: pd.DataFrame, key_column: str) -> pd.DataFrame:
    """Per-segment counters of the rows excluded from hourly_distribution."""
    missing_hour = counts[counts[HOUR_OF_DAY_LOCAL].isna()]
    columns = list(HOURLY_COLUMNS)
    out = _per_segment(missing_hour, columns).rename(columns={SEGMENT_KEY: key_column, **HOURLY_COLUMNS})
    return out


def build_summary_views(counts: pd.DataFrame, key_column: str, summary_table: str) -> Dict[str, pd.DataFrame]:
    """All four grouped views, keyed by output table name."""
    return {
        summary_table: summary_by_segment(counts, key_column),
        "summary_alert_overlap": summary_alert_overlap(counts, key_column),
        "summary_fraud_in_alerts": summary_fraud_in_alerts(counts, key_column),
        "hourly_distribution": hourly_distribution(counts, key_column),
    }
