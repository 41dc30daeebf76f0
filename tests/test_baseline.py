"""
Unit tests for historical baseline computation.
"""

from datetime import date, timedelta

import pytest

from ai_usage_sync.core.baseline import BaselineResult, BaselineSource, compute_baseline

MONDAY = date(2025, 1, 13)


class TestComputeBaseline:
    """Test same-weekday and simple-average baselines."""

    def test_same_weekday_average(self):
        history = [
            (MONDAY - timedelta(days=7), 100.0),
            (MONDAY - timedelta(days=14), 300.0),
            (MONDAY - timedelta(days=1), 5000.0),
        ]
        result = compute_baseline(history, MONDAY)

        assert result.source is BaselineSource.SAME_WEEKDAY
        assert result.value == pytest.approx(200.0)
        assert result.sample_count == 2

    def test_falls_back_to_simple_average(self):
        history = [(MONDAY - timedelta(days=7), 100.0), (MONDAY - timedelta(days=1), 300.0)]
        result = compute_baseline(history, MONDAY)

        assert result.source is BaselineSource.SIMPLE_AVERAGE
        assert result.value == pytest.approx(200.0)

    def test_zero_days_ignored(self):
        history = [
            (MONDAY - timedelta(days=7), 0.0),
            (MONDAY - timedelta(days=14), 0.0),
            (MONDAY - timedelta(days=2), 90.0),
        ]
        result = compute_baseline(history, MONDAY)

        assert result.source is BaselineSource.SIMPLE_AVERAGE
        assert result.value == pytest.approx(90.0)

    def test_no_usable_history(self):
        assert compute_baseline([], MONDAY) is None
        assert compute_baseline([(MONDAY - timedelta(days=7), 0.0)], MONDAY) is None

    def test_target_date_excluded(self):
        assert compute_baseline([(MONDAY, 999.0)], MONDAY) is None

    def test_configurable_sample_threshold(self):
        history = [(MONDAY - timedelta(days=7), 100.0), (MONDAY - timedelta(days=1), 300.0)]
        result = compute_baseline(history, MONDAY, min_same_weekday_samples=1)
        assert result.source is BaselineSource.SAME_WEEKDAY
        assert result.value == pytest.approx(100.0)


class TestBaselineResult:
    def test_non_positive_value_rejected(self):
        with pytest.raises(ValueError, match="positive"):
            BaselineResult(value=0.0, source=BaselineSource.SIMPLE_AVERAGE, sample_count=1)
