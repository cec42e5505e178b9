"""
Alert Policy Engine

Applies the per-segment thresholds to both scoring pipelines and labels
how their alerts overlap.

Business Rule:
    A pipeline alerts on an event when its raw score OR its MT score meets
    or exceeds the segment threshold (inclusive >=).

Null Policy:
    A null score cannot trigger an alert: that disjunct counts as
    "not satisfied". It does not suppress an alert raised by the other
    score. Null never reaches the alert flags themselves.

Overlap Sets:
    BOTH_ALERT      = DSE_ALERT AND PROD_ALERT
    DSE_ONLY_ALERT  = DSE_ALERT AND NOT PROD_ALERT
    PROD_ONLY_ALERT = NOT DSE_ALERT AND PROD_ALERT

Critical Guarantee:
    For every event at most one overlap flag is true, and exactly one is
    true whenever either pipeline alerted.
"""

from typing import Dict, Tuple

import pandas as pd

from alert_overlap.evaluation.thresholds import TH_MT, TH_RAW
from alert_overlap.ingestion.schema import PIPELINE_SCORES

DSE_ALERT = "DSE_ALERT"
PROD_ALERT = "PROD_ALERT"
BOTH_ALERT = "BOTH_ALERT"
DSE_ONLY_ALERT = "DSE_ONLY_ALERT"
PROD_ONLY_ALERT = "PROD_ONLY_ALERT"

ALERT_COLUMNS = {"dse": DSE_ALERT, "prod": PROD_ALERT}
OVERLAP_COLUMNS = [BOTH_ALERT, DSE_ONLY_ALERT, PROD_ONLY_ALERT]


def score_meets_threshold(score: pd.Series, threshold: pd.Series) -> pd.Series:
    """score >= threshold, with a null score treated as not satisfied."""
    return (score >= threshold).fillna(False).astype(bool)


def label_overlap(dse_alert: pd.Series, prod_alert: pd.Series) -> Dict[str, pd.Series]:
    """Derive the three mutually exclusive overlap sets from the two alert flags."""
    dse_alert = dse_alert.astype(bool)
    prod_alert = prod_alert.astype(bool)
    return {
        BOTH_ALERT: dse_alert & prod_alert,
        DSE_ONLY_ALERT: dse_alert & ~prod_alert,
        PROD_ONLY_ALERT: ~dse_alert & prod_alert,
    }


class AlertPolicy:
    """
    Threshold alerting for the reference (DSE) and production pipelines.

    Usage:
        policy = AlertPolicy()
        flagged, metadata = policy.decide_alerts(events_with_thresholds)

        # Verify overlap sets are disjoint
        policy.verify_overlap_disjoint(flagged)
    """

    def __init__(self, pipelines: Dict[str, Tuple[str, str]] = None):
        """
        Args:
            pipelines: pipeline name -> (raw score column, MT score column).
                Defaults to the DSE / PROD columns of the snapshot.
        """
        self.pipelines = dict(pipelines or PIPELINE_SCORES)
        if set(self.pipelines) != set(ALERT_COLUMNS):
            raise ValueError(f"pipelines must be {sorted(ALERT_COLUMNS)}, got {sorted(self.pipelines)}")

    def decide_alerts(self, events: pd.DataFrame) -> Tuple[pd.DataFrame, Dict]:
        """
        Classify every event for both pipelines and label the overlap.

        Args:
            events: DataFrame with the four score columns plus
                th_raw_x1000 / th_mt_x1000 (see ThresholdTable.attach)

        Returns:
            flagged: copy of events with DSE_ALERT, PROD_ALERT, BOTH_ALERT,
                DSE_ONLY_ALERT, PROD_ONLY_ALERT (bool)
            metadata: Dict with:
                - 'num_events': int
                - 'dse_alerts': int
                - 'prod_alerts': int
                - 'both': int, 'dse_only': int, 'prod_only': int
                - 'null_scores': Dict[str, int] (per score column)
        """
        for col in (TH_RAW, TH_MT):
            if col not in events.columns:
                raise ValueError(f"events must have '{col}' column (attach thresholds first)")

        df = events.copy()

        null_scores = {}
        for name, (raw_col, mt_col) in self.pipelines.items():
            raw_hit = score_meets_threshold(df[raw_col], df[TH_RAW])
            mt_hit = score_meets_threshold(df[mt_col], df[TH_MT])
            df[ALERT_COLUMNS[name]] = raw_hit | mt_hit

            null_scores[raw_col] = int(df[raw_col].isna().sum())
            null_scores[mt_col] = int(df[mt_col].isna().sum())

        for col, values in label_overlap(df[DSE_ALERT], df[PROD_ALERT]).items():
            df[col] = values

        metadata = {
            'num_events': len(df),
            'dse_alerts': int(df[DSE_ALERT].sum()),
            'prod_alerts': int(df[PROD_ALERT].sum()),
            'both': int(df[BOTH_ALERT].sum()),
            'dse_only': int(df[DSE_ONLY_ALERT].sum()),
            'prod_only': int(df[PROD_ONLY_ALERT].sum()),
            'null_scores': null_scores,
        }

        return df, metadata

    def verify_overlap_disjoint(self, flagged: pd.DataFrame) -> bool:
        """
        Verify that no event sits in more than one overlap set, and that
        every alerted event sits in exactly one.

        Raises:
            AssertionError listing the offending row positions
        """
        n_sets = flagged[OVERLAP_COLUMNS].astype(int).sum(axis=1)
        any_alert = flagged[DSE_ALERT] | flagged[PROD_ALERT]

        bad = (n_sets > 1) | (any_alert & (n_sets != 1)) | (~any_alert & (n_sets != 0))
        if bad.any():
            positions = list(bad[bad].index[:10])
            raise AssertionError(
                f"Overlap sets are not disjoint for {int(bad.sum())} rows "
                f"(first positions: {positions})"
            )
        return True
