"""
Mismatch Diagnostics (diagnostics_mismatch)

For events where only one pipeline alerted, how clear was the call?

Samples (per segment):
    dse_only_margin   : GREATEST(dse_raw_margin, dse_mt_margin)            on DSE_ONLY rows
    dse_only_deficit  : GREATEST(th_raw - prod_raw, th_mt - prod_mt)       on DSE_ONLY rows
    prod_only_margin  : GREATEST(prod_raw_margin, prod_mt_margin)          on PROD_ONLY rows
    prod_only_deficit : GREATEST(th_raw - dse_raw, th_mt - dse_mt)         on PROD_ONLY rows

The margin is how far the alerting pipeline cleared its threshold; the
deficit is how far the quiet pipeline fell short of the same thresholds.
Rows with a null component are left out of the sample.

Estimator:
    Exact nearest-rank on the fully merged, sorted sample:
        rank = max(1, ceil(fraction * n)),  value = sorted[rank - 1]
    There is no approximation error, and the result does not depend on how
    rows were sharded. An empty sample gives null, not 0.
"""

import math
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from alert_overlap.evaluation.alert_policy import DSE_ONLY_ALERT, PROD_ONLY_ALERT
from alert_overlap.evaluation.thresholds import TH_MT, TH_RAW
from alert_overlap.features.enrichment import (
    DSE_MT_MARGIN,
    DSE_RAW_MARGIN,
    PROD_MT_MARGIN,
    PROD_RAW_MARGIN,
    greatest,
)
from alert_overlap.ingestion.schema import DSE_MT, DSE_RAW, PROD_MT, PROD_RAW
from alert_overlap.ingestion.segment_filter import SEGMENT_KEY

DEFAULT_FRACTIONS = (0.10, 0.50, 0.90)

SampleKey = Tuple[str, str]
Samples = Dict[SampleKey, np.ndarray]


def _dse_only_margin(rows: pd.DataFrame) -> pd.Series:
    return greatest(rows[DSE_RAW_MARGIN], rows[DSE_MT_MARGIN])


def _dse_only_deficit(rows: pd.DataFrame) -> pd.Series:
    return greatest(rows[TH_RAW] - rows[PROD_RAW].astype("Float64"),
                    rows[TH_MT] - rows[PROD_MT].astype("Float64"))


def _prod_only_margin(rows: pd.DataFrame) -> pd.Series:
    return greatest(rows[PROD_RAW_MARGIN], rows[PROD_MT_MARGIN])


def _prod_only_deficit(rows: pd.DataFrame) -> pd.Series:
    return greatest(rows[TH_RAW] - rows[DSE_RAW].astype("Float64"),
                    rows[TH_MT] - rows[DSE_MT].astype("Float64"))


# sample name -> (overlap set it is restricted to, value function)
SAMPLES: Dict[str, Tuple[str, Callable[[pd.DataFrame], pd.Series]]] = {
    "dse_only_margin": (DSE_ONLY_ALERT, _dse_only_margin),
    "dse_only_deficit": (DSE_ONLY_ALERT, _dse_only_deficit),
    "prod_only_margin": (PROD_ONLY_ALERT, _prod_only_margin),
    "prod_only_deficit": (PROD_ONLY_ALERT, _prod_only_deficit),
}


def nearest_rank_quantile(sorted_values: Sequence[float], fraction: float) -> Optional[float]:
    """
    Nearest-rank quantile of an ascending sample.

    Example:
        >>> nearest_rank_quantile([1, 2, 3, 4, 5, 6, 7, 8, 9, 10], 0.9)
        9.0
        >>> nearest_rank_quantile([], 0.5) is None
        True
    """
    n = len(sorted_values)
    if n == 0:
        return None
    if fraction <= 0 or fraction > 1:
        raise ValueError(f"fraction must be in (0, 1], got {fraction}")

    # round() keeps 0.1 * 30 from landing on rank 4
    rank = max(1, math.ceil(round(fraction * n, 9)))
    return float(sorted_values[rank - 1])


def quantile_label(fraction: float) -> str:
    """0.1 -> 'p10', 0.995 -> 'p99.5'"""
    return f"p{round(fraction * 100, 6):g}"


def mismatch_samples(rows: pd.DataFrame) -> Samples:
    """
    Sorted samples per (segment_key, sample name) for one shard.

    Every segment present in rows gets an entry for every sample, possibly
    empty, so segments without mismatches still appear in the output.
    """
    samples: Samples = {}
    for segment, seg_rows in rows.groupby(SEGMENT_KEY, sort=True):
        for name, (overlap_col, value_fn) in SAMPLES.items():
            subset = seg_rows[seg_rows[overlap_col].astype(bool)]
            if subset.empty:
                values = np.array([], dtype="float64")
            else:
                values = value_fn(subset).dropna().to_numpy(dtype="float64")
            samples[(segment, name)] = np.sort(values)
    return samples


def merge_samples(partials: Iterable[Samples]) -> Samples:
    """Combine per-shard samples. Concatenate + sort, so order does not matter."""
    pieces: Dict[SampleKey, List[np.ndarray]] = {}
    for partial in partials:
        for key, values in partial.items():
            pieces.setdefault(key, []).append(values)
    return {key: np.sort(np.concatenate(chunks)) for key, chunks in pieces.items()}


def diagnostics_mismatch(
    samples: Samples,
    key_column: str,
    fractions: Sequence[float] = DEFAULT_FRACTIONS,
) -> pd.DataFrame:
    """
    One row per segment with <sample>_p<NN> columns (nullable Float64).

    Args:
        samples: merged output of mismatch_samples / merge_samples
        key_column: name of the segment column in the output
        fractions: quantile fractions, default 0.10 / 0.50 / 0.90
    """
    segments = sorted({segment for segment, _ in samples})
    empty = np.array([], dtype="float64")

    columns: Dict[str, list] = {key_column: segments}
    for name in SAMPLES:
        for fraction in fractions:
            columns[f"{name}_{quantile_label(fraction)}"] = [
                nearest_rank_quantile(samples.get((segment, name), empty), fraction)
                for segment in segments
            ]

    out = pd.DataFrame({key_column: pd.Series(segments, dtype="object")})
    for col, values in columns.items():
        if col == key_column:
            continue
        out[col] = pd.array(values, dtype="Float64")
    return out
