"""
Alert Overlap Analysis
======================

Batch comparison of two fraud-scoring pipelines (reference "DSE" and
production "PROD") against per-segment thresholds:
- Per-event alert classification and overlap labeling (both / DSE only / PROD only)
- Grouped summaries by segment, overlap, fraud-in-alert and local hour
- Nearest-rank quantile diagnostics for the disagreement cases

Every run recomputes all output tables from a full DuckDB snapshot.
"""

__version__ = "1.0.0"
