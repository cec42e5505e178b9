"""Tests for alert_overlap.features."""
