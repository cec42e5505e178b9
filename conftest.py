"""
Pytest configuration and shared fixtures.

Markers are registered here; event factories are shared by every test
package (ingestion, features, evaluation, top-level tests/).
"""

import itertools

import pandas as pd
import pytest


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (reads/writes a DuckDB file)"
    )
    config.addinivalue_line(
        "markers",
        "unit: mark test as unit test (fast, isolated)"
    )


# All scores far below every threshold: no alert unless a test says otherwise
BASE_EVENT = {
    "Portfolio": "HSBC DIGITAL",
    "customer_portfolio_channel": "DG",
    "event_received_at": "2025-06-01T12:00:00Z",
    "dse_raw_score_X1000": 100.0,
    "dse_mt_score_X1000": 100.0,
    "raw_score_X1000": 100.0,
    "mt_score_X1000": 100.0,
    "FLAG_FRAUD": 0,
    "FRAUD_TYPE": None,
}


@pytest.fixture
def make_event():
    """Factory: one scored-event dict with unique ids, defaults overridable."""
    counter = itertools.count(1)

    def _make(**overrides):
        i = next(counter)
        event = {"lifecycle_id": f"LC{i:04d}", "customer_id": f"C{i:04d}", **BASE_EVENT}
        event.update(overrides)
        return event

    return _make


@pytest.fixture
def make_frame(make_event):
    """Factory: snapshot DataFrame from a list of per-event overrides."""
    def _frame(*overrides):
        return pd.DataFrame([make_event(**o) for o in overrides])

    return _frame


@pytest.fixture
def scenario_snapshot(make_frame):
    """
    Hand-checked snapshot used across evaluation tests.

    HSBC DIGITAL (980/765):
        1. DSE only  (dse_raw 985), fraud, 12:00Z June   -> hour 13 (BST)
        2. both      (990/800 everywhere), fraud, 12:30Z June -> hour 13
        3. PROD only (prod_mt 770), 08:00Z January      -> hour 8 (GMT)
        4. no alert, unparseable timestamp              -> no hour
    FD DIGITAL (950/735):
        5. no alert, prod_mt null, prod_raw 400, unparseable timestamp
        6. DSE only  (dse_raw 960), 01:30Z on 2025-03-30 -> hour 2 (clocks just went forward)
    cmb digital (lower case, 935/760):
        7. no alert, 00:30Z on 2025-03-30               -> hour 0
    PREMIER (unrecognized):
        8. dropped before classification
    """
    return make_frame(
        dict(dse_raw_score_X1000=985.0, dse_mt_score_X1000=100.0, raw_score_X1000=900.0,
             mt_score_X1000=700.0, FLAG_FRAUD=1, FRAUD_TYPE="APP_SCAM",
             event_received_at="2025-06-01T12:00:00Z"),
        dict(dse_raw_score_X1000=990.0, dse_mt_score_X1000=800.0, raw_score_X1000=990.0,
             mt_score_X1000=800.0, FLAG_FRAUD=1, FRAUD_TYPE="MULE",
             event_received_at="2025-06-01T12:30:00Z"),
        dict(mt_score_X1000=770.0, event_received_at="2025-01-15T08:00:00Z"),
        dict(event_received_at="not-a-timestamp"),
        dict(Portfolio="FD DIGITAL", customer_portfolio_channel="FD",
             raw_score_X1000=400.0, mt_score_X1000=None, event_received_at="garbage"),
        dict(Portfolio="FD DIGITAL", customer_portfolio_channel="FD",
             dse_raw_score_X1000=960.0, dse_mt_score_X1000=700.0, raw_score_X1000=940.0,
             mt_score_X1000=730.0, event_received_at="2025-03-30T01:30:00Z"),
        dict(Portfolio="cmb digital", customer_portfolio_channel="CMB",
             event_received_at="2025-03-30T00:30:00Z"),
        dict(Portfolio="PREMIER", customer_portfolio_channel="PRM", dse_raw_score_X1000=999.0),
    )
