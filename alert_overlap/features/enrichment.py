"""
Row Enricher (analysis_rows_alerts).

Takes segment-filtered events and produces the row-level analysis table:
thresholds, alert/overlap flags, margins to thresholds, rounded-score
agreement and the local hour bucket.

All arithmetic is done on nullable Float64 columns, so a missing score gives
a missing margin instead of an exception or a silent zero.
"""

from typing import Dict, List, Tuple

import pandas as pd

from alert_overlap.evaluation.alert_policy import (
    AlertPolicy,
    BOTH_ALERT,
    DSE_ALERT,
    DSE_ONLY_ALERT,
    PROD_ALERT,
    PROD_ONLY_ALERT,
)
from alert_overlap.evaluation.thresholds import TH_MT, TH_RAW, ThresholdTable
from alert_overlap.features.time_utils import (
    EVT_TS_UTC,
    HOUR_OF_DAY_LOCAL,
    local_hour_of_day,
    parse_event_timestamps,
    to_naive_utc,
)
from alert_overlap.ingestion.schema import (
    ACTUAL_FRAUD_REASON,
    CUSTOMER_ID,
    DSE_MT,
    DSE_MT_ROUNDED,
    DSE_RAW,
    DSE_RAW_ROUNDED,
    EVENT_RECEIVED_AT,
    FLAG_FRAUD,
    FRAUD_TYPE,
    LIFECYCLE_ID,
    PROD_MT,
    PROD_MT_ROUNDED,
    PROD_RAW,
    PROD_RAW_ROUNDED,
    ROUNDED_COLUMNS,
)
from alert_overlap.ingestion.segment_filter import SEGMENT_KEY

DSE_RAW_MARGIN = "dse_raw_margin"
DSE_MT_MARGIN = "dse_mt_margin"
PROD_RAW_MARGIN = "prod_raw_margin"
PROD_MT_MARGIN = "prod_mt_margin"

# margin column -> (score column, threshold column)
MARGINS: Dict[str, Tuple[str, str]] = {
    DSE_RAW_MARGIN: (DSE_RAW, TH_RAW),
    DSE_MT_MARGIN: (DSE_MT, TH_MT),
    PROD_RAW_MARGIN: (PROD_RAW, TH_RAW),
    PROD_MT_MARGIN: (PROD_MT, TH_MT),
}

SHADOW_MATCH_ROUNDED = "shadow_match_rounded"
MT_MATCH_ROUNDED = "mt_match_rounded"

IS_FRAUD = "is_fraud"

SEGMENT_LABEL_COLUMNS = ["customer_portfolio_channel", "Portfolio"]
BUSINESS_COLUMNS = ["tbt_tran_amt", "decision"]


def greatest(left: pd.Series, right: pd.Series) -> pd.Series:
    """
    Row-wise max of two nullable series. Null if either side is null
    (SQL GREATEST semantics), so incomplete rows never look complete.
    """
    left = left.astype("Float64")
    right = right.astype("Float64")
    take_left = (left >= right).fillna(False).astype(bool)
    result = left.where(take_left, right)
    return result.mask(left.isna() | right.isna())


def compute_margins(df: pd.DataFrame) -> pd.DataFrame:
    """score - threshold for each of the four scores (positive = above threshold)."""
    out = df.copy()
    for margin_col, (score_col, th_col) in MARGINS.items():
        out[margin_col] = out[score_col].astype("Float64") - out[th_col]
    return out


def compute_rounded_matches(df: pd.DataFrame) -> pd.DataFrame:
    """
    DSE vs PROD agreement on the rounded scores, when the source has them.
    A null on either side is "no match".
    """
    if not all(col in df.columns for col in ROUNDED_COLUMNS):
        return df

    out = df.copy()
    out[SHADOW_MATCH_ROUNDED] = (
        out[DSE_RAW_ROUNDED].astype("Float64") == out[PROD_RAW_ROUNDED].astype("Float64")
    ).fillna(False).astype(bool)
    out[MT_MATCH_ROUNDED] = (
        out[DSE_MT_ROUNDED].astype("Float64") == out[PROD_MT_ROUNDED].astype("Float64")
    ).fillna(False).astype(bool)
    return out


def fraud_indicator(flag: pd.Series) -> pd.Series:
    """FLAG_FRAUD == 1, with a null marker counted as not fraud."""
    return (flag == 1).fillna(False).astype(bool)


def _output_columns(df: pd.DataFrame) -> List[str]:
    candidates = [
        LIFECYCLE_ID, CUSTOMER_ID,
        *SEGMENT_LABEL_COLUMNS, SEGMENT_KEY,
        EVENT_RECEIVED_AT, EVT_TS_UTC, HOUR_OF_DAY_LOCAL,
        *BUSINESS_COLUMNS,
        DSE_RAW, DSE_MT, PROD_RAW, PROD_MT,
        SHADOW_MATCH_ROUNDED, MT_MATCH_ROUNDED,
        TH_RAW, TH_MT,
        DSE_ALERT, PROD_ALERT,
        BOTH_ALERT, DSE_ONLY_ALERT, PROD_ONLY_ALERT,
        FLAG_FRAUD, FRAUD_TYPE, ACTUAL_FRAUD_REASON,
        *MARGINS,
    ]
    return [c for c in candidates if c in df.columns]


def enrich_events(
    events: pd.DataFrame,
    thresholds: ThresholdTable,
    timezone: str,
    policy: AlertPolicy = None,
) -> pd.DataFrame:
    """
    Build analysis rows for one shard of segment-filtered events.

    Rows are independent of each other, so any split of the input gives the
    same rows back when the shards are concatenated.

    Returns:
        DataFrame in analysis_rows_alerts column order plus the helper
        column is_fraud (bool), which callers drop before persisting.
    """
    policy = policy or AlertPolicy()

    df = thresholds.attach(events, SEGMENT_KEY)
    df, _ = policy.decide_alerts(df)
    df = compute_margins(df)
    df = compute_rounded_matches(df)

    instants = parse_event_timestamps(df[EVENT_RECEIVED_AT])
    df[HOUR_OF_DAY_LOCAL] = local_hour_of_day(instants, timezone)
    df[EVT_TS_UTC] = to_naive_utc(instants)

    out = df[_output_columns(df)].copy()
    out[IS_FRAUD] = fraud_indicator(df[FLAG_FRAUD])
    return out
