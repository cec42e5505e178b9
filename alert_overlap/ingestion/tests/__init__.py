"""Tests for alert_overlap.ingestion."""
