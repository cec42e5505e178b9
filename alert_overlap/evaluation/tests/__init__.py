"""Tests for alert_overlap.evaluation."""
