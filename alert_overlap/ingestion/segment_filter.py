import logging

import pandas as pd

from alert_overlap.config import SegmentProfile

logger = logging.getLogger(__name__)

SEGMENT_KEY = "segment_key"


def filter_segments(df: pd.DataFrame, profile: SegmentProfile) -> pd.DataFrame:
    """
    Restricts events to recognized segments and adds the canonical key.

    Logic:
    1. Uppercase the raw label (matching is case-insensitive, not whitespace-insensitive)
    2. Map it through profile.labels to the canonical key
    3. Drop rows whose label is unknown or null

    Dropping is a scope restriction, not an error. Those rows are never
    classified, so they never meet a missing threshold.
    """
    normalized = df[profile.segment_column].astype("string").str.upper()
    keys = normalized.map(profile.labels)

    recognized = keys.notna()
    dropped = int((~recognized).sum())
    if dropped:
        logger.info(f"Dropped {dropped:,} rows with unrecognized {profile.segment_column} labels")

    out = df.loc[recognized].copy()
    out[SEGMENT_KEY] = keys[recognized].astype(str)
    return out.reset_index(drop=True)
