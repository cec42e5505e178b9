"""Goal: Produce a realistic DSE vs PROD scored-event snapshot for local runs.

What it generates (one row per lifecycle):
• Portfolio + customer_portfolio_channel labels, mostly the three digital
  portfolios, some in mixed case, some unrecognized ("PREMIER", "BRANCH").
• PROD scores (raw + MT, x1000) drawn from beta distributions, and DSE scores
  as PROD plus small noise, so the two pipelines mostly but not always agree.
• Rounded variants of all four scores.
• FLAG_FRAUD (~3% fraud, more likely on high scores) and FRAUD_TYPE.
• event_received_at spread over a year (crosses both UK DST switches).

Injected anomalies:
• Null scores (each score column ~1%)
• Unparseable timestamps (~0.5%)
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd

sys.path.append(str(Path(__file__).parent.parent))

PORTFOLIOS = {
    "HSBC DIGITAL": "DG",
    "FD DIGITAL": "FD",
    "CMB DIGITAL": "CMB",
    "PREMIER": "PRM",
    "BRANCH": "BR",
}
PORTFOLIO_WEIGHTS = [0.4, 0.25, 0.2, 0.1, 0.05]

FRAUD_TYPES = ["APP_SCAM", "ACCOUNT_TAKEOVER", "CARD_NOT_PRESENT", "MULE"]


def _scores(rng: np.random.Generator, n: int, a: float, b: float) -> np.ndarray:
    return rng.beta(a, b, n) * 1000


def generate_scored_events(n: int = 10_000, seed: int = 42) -> pd.DataFrame:
    """Build a seeded synthetic snapshot with the scored-event columns."""
    rng = np.random.default_rng(seed)

    portfolios = rng.choice(list(PORTFOLIOS), size=n, p=PORTFOLIO_WEIGHTS)
    channels = np.array([PORTFOLIOS[p] for p in portfolios])

    # Mixed case labels: matching must be case-insensitive
    lower_mask = rng.random(n) < 0.1
    portfolios = np.where(lower_mask, np.char.lower(portfolios.astype(str)), portfolios)

    prod_raw = _scores(rng, n, 8, 2)
    prod_mt = _scores(rng, n, 5, 3)
    dse_raw = np.clip(prod_raw + rng.normal(0, 15, n), 0, 1000)
    dse_mt = np.clip(prod_mt + rng.normal(0, 15, n), 0, 1000)

    # Fraud is more likely on high PROD raw scores
    fraud_p = np.where(prod_raw >= 950, 0.25, 0.01)
    is_fraud = rng.random(n) < fraud_p

    start = pd.Timestamp("2025-01-01T00:00:00Z")
    offsets = pd.to_timedelta(rng.integers(0, 365 * 24 * 3600, n), unit="s")
    timestamps = (start + offsets).strftime("%Y-%m-%dT%H:%M:%SZ").to_numpy(dtype=object)

    df = pd.DataFrame({
        "lifecycle_id": [f"LC{i:08d}" for i in range(n)],
        "customer_id": [f"CUST{x:06d}" for x in rng.integers(0, n // 3 + 1, n)],
        "event_received_at": timestamps,
        "customer_portfolio_channel": channels,
        "Portfolio": portfolios,
        "dse_raw_score_X1000": dse_raw,
        "dse_mt_score_X1000": dse_mt,
        "raw_score_X1000": prod_raw,
        "mt_score_X1000": prod_mt,
        "FLAG_FRAUD": is_fraud.astype(int),
        "FRAUD_TYPE": np.where(is_fraud, rng.choice(FRAUD_TYPES, n), None),
        "tbt_tran_amt": np.round(rng.lognormal(4, 1.2, n), 2),
        "decision": rng.choice(["ALLOW", "REVIEW", "DECLINE"], n, p=[0.9, 0.08, 0.02]),
    })

    for col in ["dse_raw_score_X1000", "dse_mt_score_X1000", "raw_score_X1000", "mt_score_X1000"]:
        df[f"{col}_rounded"] = df[col].round()

    # --- Anomalies ---
    # a missing score has no rounded value either
    for col in ["dse_raw_score_X1000", "dse_mt_score_X1000", "raw_score_X1000", "mt_score_X1000"]:
        df.loc[rng.random(n) < 0.01, [col, f"{col}_rounded"]] = np.nan

    bad_ts = rng.random(n) < 0.005
    df.loc[bad_ts, "event_received_at"] = "not-a-timestamp"

    return df


if __name__ == "__main__":
    from data_generation.save_to_duckdb import save_to_duckdb

    print("Starting Scored Event Generation.")
    events = generate_scored_events()
    print(f"shape of snapshot is {events.shape}")
    print(f"fraud rate: {events['FLAG_FRAUD'].mean():.2%}")

    project_root = Path(__file__).parent.parent
    save_to_duckdb(events, project_root / "data" / "processed" / "dse_prod_scores.duckdb")
    print(" DONE! Snapshot created.")
