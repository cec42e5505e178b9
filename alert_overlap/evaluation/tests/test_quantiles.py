"""
Tests for Mismatch Quantiles

Nearest-rank must be exact, monotone in the fraction, null on an empty
sample and independent of how samples were split across shards.
"""

import numpy as np
import pandas as pd
import pytest

from alert_overlap.config import PORTFOLIO_PROFILE
from alert_overlap.evaluation.quantiles import (
    SAMPLES,
    diagnostics_mismatch,
    merge_samples,
    mismatch_samples,
    nearest_rank_quantile,
    quantile_label,
)
from alert_overlap.evaluation.thresholds import ThresholdTable
from alert_overlap.features.enrichment import enrich_events
from alert_overlap.ingestion.batch_loader import normalize_types
from alert_overlap.ingestion.segment_filter import filter_segments


@pytest.fixture
def scenario_rows(scenario_snapshot):
    events = filter_segments(normalize_types(scenario_snapshot), PORTFOLIO_PROFILE)
    return enrich_events(events, ThresholdTable.from_profile(PORTFOLIO_PROFILE), "Europe/London")


# ============================================================================
# TEST 1: Nearest Rank
# ============================================================================

@pytest.mark.unit
@pytest.mark.parametrize("fraction, expected", [(0.10, 1.0), (0.50, 5.0), (0.90, 9.0), (1.0, 10.0)])
def test_nearest_rank_on_one_to_ten(fraction, expected):
    assert nearest_rank_quantile(list(range(1, 11)), fraction) == expected


@pytest.mark.unit
def test_nearest_rank_does_not_overshoot_on_float_error():
    """0.1 * 30 is 3.0000000000000004 in floating point; the rank is still 3."""
    assert nearest_rank_quantile(list(range(1, 31)), 0.10) == 3.0


@pytest.mark.unit
def test_nearest_rank_small_samples():
    assert nearest_rank_quantile([42.0], 0.10) == 42.0
    assert nearest_rank_quantile([42.0], 0.90) == 42.0
    assert nearest_rank_quantile([1.0, 2.0], 0.50) == 1.0
    assert nearest_rank_quantile([1.0, 2.0], 0.51) == 2.0


@pytest.mark.unit
def test_empty_sample_gives_none():
    assert nearest_rank_quantile([], 0.5) is None


@pytest.mark.unit
@pytest.mark.parametrize("fraction", [0, -0.1, 1.5])
def test_invalid_fraction_rejected(fraction):
    with pytest.raises(ValueError):
        nearest_rank_quantile([1.0, 2.0], fraction)


@pytest.mark.unit
def test_quantiles_are_monotone_in_fraction():
    rng = np.random.default_rng(7)
    values = np.sort(rng.normal(0, 50, size=257))

    p10, p50, p90 = (nearest_rank_quantile(values, f) for f in (0.1, 0.5, 0.9))

    assert p10 <= p50 <= p90


@pytest.mark.unit
@pytest.mark.parametrize("fraction, label", [(0.1, "p10"), (0.5, "p50"), (0.9, "p90"), (0.995, "p99.5")])
def test_quantile_label(fraction, label):
    assert quantile_label(fraction) == label


# ============================================================================
# TEST 2: Samples and Merging
# ============================================================================

@pytest.mark.unit
def test_every_segment_gets_every_sample(scenario_rows):
    samples = mismatch_samples(scenario_rows)

    for segment in ("HSBC DIGITAL", "FD DIGITAL", "CMB DIGITAL"):
        for name in SAMPLES:
            assert (segment, name) in samples
    assert samples[("CMB DIGITAL", "dse_only_margin")].size == 0


@pytest.mark.unit
def test_merge_is_order_independent():
    rng = np.random.default_rng(3)
    values = rng.integers(-100, 100, size=60).astype(float)
    chunks = [
        {("A", "dse_only_margin"): np.sort(values[:10])},
        {("A", "dse_only_margin"): np.sort(values[10:45])},
        {("A", "dse_only_margin"): np.sort(values[45:])},
    ]

    forward = merge_samples(chunks)[("A", "dse_only_margin")]
    backward = merge_samples(reversed(chunks))[("A", "dse_only_margin")]

    np.testing.assert_array_equal(forward, np.sort(values))
    np.testing.assert_array_equal(backward, np.sort(values))


@pytest.mark.unit
def test_rows_with_null_component_left_out_of_sample(make_frame):
    """DSE only on raw score, but dse_mt is null: margin is null, so no sample value."""
    snapshot = make_frame(dict(dse_raw_score_X1000=990.0, dse_mt_score_X1000=None))
    events = filter_segments(normalize_types(snapshot), PORTFOLIO_PROFILE)
    rows = enrich_events(events, ThresholdTable.from_profile(PORTFOLIO_PROFILE), "Europe/London")

    samples = mismatch_samples(rows)

    assert samples[("HSBC DIGITAL", "dse_only_margin")].size == 0
    assert samples[("HSBC DIGITAL", "dse_only_deficit")].tolist() == [880.0]


# ============================================================================
# TEST 3: diagnostics_mismatch
# ============================================================================

@pytest.mark.unit
def test_diagnostics_values(scenario_rows):
    diag = diagnostics_mismatch(mismatch_samples(scenario_rows), "portfolio").set_index("portfolio")

    assert diag.loc["HSBC DIGITAL", "dse_only_margin_p50"] == 5
    assert diag.loc["HSBC DIGITAL", "dse_only_deficit_p90"] == 80
    assert diag.loc["HSBC DIGITAL", "prod_only_margin_p10"] == 5
    assert diag.loc["HSBC DIGITAL", "prod_only_deficit_p50"] == 880
    assert diag.loc["FD DIGITAL", "dse_only_margin_p10"] == 10
    assert diag.loc["FD DIGITAL", "dse_only_deficit_p50"] == 10
    assert pd.isna(diag.loc["FD DIGITAL", "prod_only_margin_p50"])
    assert diag.loc["CMB DIGITAL"].isna().all()


@pytest.mark.unit
def test_diagnostics_columns_follow_fractions(scenario_rows):
    diag = diagnostics_mismatch(mismatch_samples(scenario_rows), "portfolio", fractions=[0.25, 0.75])

    assert list(diag.columns[:3]) == ["portfolio", "dse_only_margin_p25", "dse_only_margin_p75"]
    assert len(diag.columns) == 1 + len(SAMPLES) * 2
    assert all(str(diag[c].dtype) == "Float64" for c in diag.columns[1:])
