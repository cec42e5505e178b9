"""
Tests for Grouped View Correctness

Checks every view against the hand-computed scenario in conftest.py, the
null-ratio policy, the __OVERALL__ rows and that merging partial counts
gives the same answer as counting everything at once.
"""

import pandas as pd
import pytest

from alert_overlap.config import PORTFOLIO_PROFILE
from alert_overlap.evaluation.consistency_check import check_view_consistency
from alert_overlap.evaluation.metrics import (
    OVERALL_KEY,
    build_summary_views,
    merge_partial_counts,
    partial_counts,
    safe_divide,
    unbucketed_counts,
)
from alert_overlap.evaluation.thresholds import ThresholdTable
from alert_overlap.features.enrichment import enrich_events
from alert_overlap.ingestion.batch_loader import normalize_types
from alert_overlap.ingestion.segment_filter import filter_segments

KEY = "portfolio"
SUMMARY = "summary_by_portfolio"


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def scenario_rows(scenario_snapshot):
    events = filter_segments(normalize_types(scenario_snapshot), PORTFOLIO_PROFILE)
    return enrich_events(events, ThresholdTable.from_profile(PORTFOLIO_PROFILE), "Europe/London")


@pytest.fixture
def counts(scenario_rows):
    return partial_counts(scenario_rows)


@pytest.fixture
def views(counts):
    return build_summary_views(counts, KEY, SUMMARY)


def row_for(view, key):
    return view[view[KEY] == key].iloc[0]


# ============================================================================
# TEST 1: Ratio Policy
# ============================================================================

@pytest.mark.unit
def test_safe_divide_gives_null_on_zero_denominator():
    result = safe_divide(pd.Series([1, 0, 3]), pd.Series([2, 0, 0]))

    assert str(result.dtype) == "Float64"
    assert result.iloc[0] == 0.5
    assert pd.isna(result.iloc[1]), "0/0 must be null, not 0"
    assert pd.isna(result.iloc[2])


# ============================================================================
# TEST 2: View Values
# ============================================================================

@pytest.mark.unit
def test_summary_by_segment(views):
    view = views[SUMMARY]

    assert view[KEY].tolist() == ["CMB DIGITAL", "FD DIGITAL", "HSBC DIGITAL"]
    assert OVERALL_KEY not in view[KEY].tolist()

    hsbc = row_for(view, "HSBC DIGITAL")
    assert hsbc["rows_total"] == 4
    assert hsbc["dse_alert_count"] == 2
    assert hsbc["dse_fraud_in_alert"] == 2
    assert hsbc["prod_alert_count"] == 2
    assert hsbc["prod_fraud_in_alert"] == 1

    fd = row_for(view, "FD DIGITAL")
    assert fd["rows_total"] == 2
    assert fd["dse_alert_count"] == 1
    assert fd["prod_alert_count"] == 0


@pytest.mark.unit
def test_summary_alert_overlap(views):
    view = views["summary_alert_overlap"]

    assert view[KEY].iloc[0] == OVERALL_KEY, "__OVERALL__ must be the first row"

    overall = row_for(view, OVERALL_KEY)
    assert overall["n"] == 7
    assert overall["both_alerts"] == 1
    assert overall["dse_only"] == 2
    assert overall["prod_only"] == 1
    assert overall["pct_both_over_all"] == pytest.approx(1 / 7)
    assert overall["pct_dse_only_over_all"] == pytest.approx(2 / 7)

    hsbc = row_for(view, "HSBC DIGITAL")
    assert (hsbc["both_alerts"], hsbc["dse_only"], hsbc["prod_only"]) == (1, 1, 1)
    assert hsbc["pct_prod_only_over_all"] == pytest.approx(0.25)

    cmb = row_for(view, "CMB DIGITAL")
    assert cmb["n"] == 1
    assert cmb["pct_both_over_all"] == 0


@pytest.mark.unit
def test_summary_fraud_in_alerts(views):
    view = views["summary_fraud_in_alerts"]

    overall = row_for(view, OVERALL_KEY)
    assert overall["alerted_rows"] == 4
    assert overall["fraud_both"] == 1
    assert overall["fraud_dse_only"] == 1
    assert overall["fraud_prod_only"] == 0
    assert overall["pct_fraud_both_over_alerted"] == pytest.approx(0.25)

    hsbc = row_for(view, "HSBC DIGITAL")
    assert hsbc["alerted_rows"] == 3
    assert hsbc["pct_fraud_dse_only_over_alerted"] == pytest.approx(1 / 3)
    assert hsbc["pct_fraud_prod_only_over_alerted"] == 0


@pytest.mark.unit
def test_segment_without_alerts_has_null_fraud_ratios(views):
    """CMB DIGITAL has no alerted rows: the row exists, ratios are null (not 0)."""
    cmb = row_for(views["summary_fraud_in_alerts"], "CMB DIGITAL")

    assert cmb["alerted_rows"] == 0
    assert pd.isna(cmb["pct_fraud_both_over_alerted"])
    assert pd.isna(cmb["pct_fraud_dse_only_over_alerted"])
    assert pd.isna(cmb["pct_fraud_prod_only_over_alerted"])


@pytest.mark.unit
def test_hourly_distribution(views):
    view = views["hourly_distribution"]

    assert list(view.columns) == [
        KEY, "hour_of_day_local", "rows_total", "both_alert_rows", "dse_only_rows", "prod_only_rows",
        "fraud_in_both", "fraud_in_dse_only", "fraud_in_prod_only", "dse_alerts_any", "prod_alerts_any",
    ]
    # rows with an unparseable timestamp are not in this view
    assert view.values.tolist() == [
        ["CMB DIGITAL", 0, 1, 0, 0, 0, 0, 0, 0, 0, 0],
        ["FD DIGITAL", 2, 1, 0, 1, 0, 0, 0, 0, 1, 0],
        ["HSBC DIGITAL", 8, 1, 0, 0, 1, 0, 0, 0, 0, 1],
        ["HSBC DIGITAL", 13, 2, 1, 1, 0, 1, 1, 0, 2, 1],
    ]


@pytest.mark.unit
def test_unbucketed_counts_cover_null_hour_rows(counts):
    unbucketed = unbucketed_counts(counts, KEY).set_index(KEY)

    assert unbucketed.loc["HSBC DIGITAL", "rows_total"] == 1
    assert unbucketed.loc["FD DIGITAL", "rows_total"] == 1
    assert "CMB DIGITAL" not in unbucketed.index


@pytest.mark.unit
def test_overall_rows_equal_sum_of_segments(views):
    for name in ("summary_alert_overlap", "summary_fraud_in_alerts"):
        view = views[name]
        counters = [c for c in view.columns if c != KEY and not c.startswith("pct_")]
        overall = view[view[KEY] == OVERALL_KEY][counters].iloc[0]
        segments = view[view[KEY] != OVERALL_KEY][counters].sum()
        assert overall.tolist() == segments.tolist(), f"{name} overall row disagrees with its segments"


@pytest.mark.unit
def test_empty_input_has_only_overall_rows():
    views = build_summary_views(merge_partial_counts([]), KEY, SUMMARY)

    assert views[SUMMARY].empty
    assert views["hourly_distribution"].empty
    overlap = views["summary_alert_overlap"]
    assert overlap[KEY].tolist() == [OVERALL_KEY]
    assert overlap["n"].iloc[0] == 0
    assert pd.isna(overlap["pct_both_over_all"].iloc[0])


# ============================================================================
# TEST 3: Partial Count Merging
# ============================================================================

@pytest.mark.unit
@pytest.mark.parametrize("cuts", [[1], [3], [2, 5], [1, 2, 3, 4, 5, 6]])
def test_merged_partials_equal_single_pass(scenario_rows, counts, cuts):
    bounds = [0, *cuts, len(scenario_rows)]
    partials = [partial_counts(scenario_rows.iloc[a:b]) for a, b in zip(bounds, bounds[1:])]

    merged = merge_partial_counts(partials)
    merged_reversed = merge_partial_counts(reversed(partials))

    pd.testing.assert_frame_equal(merged, counts)
    pd.testing.assert_frame_equal(merged_reversed, counts)


# ============================================================================
# TEST 4: Cross-View Consistency
# ============================================================================

@pytest.mark.unit
def test_consistency_check_passes_on_real_views(views, counts):
    assert check_view_consistency(views, KEY, SUMMARY, unbucketed_counts(counts, KEY))


@pytest.mark.unit
def test_consistency_check_catches_bad_overall_row(views, counts):
    overlap = views["summary_alert_overlap"].copy()
    overlap.loc[overlap[KEY] == OVERALL_KEY, "n"] += 1
    tampered = {**views, "summary_alert_overlap": overlap}

    with pytest.raises(AssertionError, match="summary_alert_overlap.n"):
        check_view_consistency(tampered, KEY, SUMMARY, unbucketed_counts(counts, KEY))


@pytest.mark.unit
def test_consistency_check_catches_missing_hour_bucket(views, counts):
    hourly = views["hourly_distribution"]
    tampered = {**views, "hourly_distribution": hourly[hourly["hour_of_day_local"] != 13]}

    with pytest.raises(AssertionError, match="hourly_distribution"):
        check_view_consistency(tampered, KEY, SUMMARY, unbucketed_counts(counts, KEY))


@pytest.mark.unit
def test_consistency_check_needs_unbucketed_rows(views, counts):
    """Without the null-hour rows the hourly view cannot add up to the totals."""
    no_unbucketed = unbucketed_counts(counts, KEY).iloc[0:0]

    with pytest.raises(AssertionError, match="rows_total"):
        check_view_consistency(views, KEY, SUMMARY, no_unbucketed)
