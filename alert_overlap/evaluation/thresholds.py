"""
Per-segment threshold lookup.

Built once at startup from the segment profile and never mutated.
"""
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

import pandas as pd

from alert_overlap.config import ConfigurationError, SegmentProfile

TH_RAW = "th_raw_x1000"
TH_MT = "th_mt_x1000"


class ThresholdTable:
    """
    Canonical segment key -> (raw threshold, MT threshold), both x1000.

    Usage:
        table = ThresholdTable.from_profile(PORTFOLIO_PROFILE)
        table.lookup("HSBC DIGITAL")  # (980, 765)
    """

    def __init__(self, thresholds: Mapping[str, Tuple[int, int]]):
        self._thresholds = MappingProxyType(dict(thresholds))

    @classmethod
    def from_profile(cls, profile: SegmentProfile) -> "ThresholdTable":
        """
        Raises ConfigurationError if a key the segment filter can emit has no
        threshold entry. This is checked before any row is read.
        """
        missing = [k for k in profile.canonical_keys() if k not in profile.thresholds]
        if missing:
            raise ConfigurationError(
                f"Profile '{profile.name}' has no thresholds for segment keys: {missing}"
            )
        return cls({
            key: (th.th_raw_x1000, th.th_mt_x1000)
            for key, th in profile.thresholds.items()
        })

    def lookup(self, key: str) -> Optional[Tuple[int, int]]:
        return self._thresholds.get(key)

    def keys(self):
        return sorted(self._thresholds)

    def attach(self, df: pd.DataFrame, key_column: str) -> pd.DataFrame:
        """Adds th_raw_x1000 / th_mt_x1000 columns for each row's segment key."""
        unknown = set(df[key_column].unique()) - set(self._thresholds)
        if unknown:
            raise ConfigurationError(f"No thresholds for segment keys: {sorted(unknown)}")

        out = df.copy()
        out[TH_RAW] = out[key_column].map({k: v[0] for k, v in self._thresholds.items()}).astype("int64")
        out[TH_MT] = out[key_column].map({k: v[1] for k, v in self._thresholds.items()}).astype("int64")
        return out
