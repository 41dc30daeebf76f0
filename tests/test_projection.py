"""
Tests for read-time projection of incomplete data.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from ai_usage_sync.config.loader import ProjectionConfig
from ai_usage_sync.core.projection import (
    DailyUsagePoint,
    ToolCompleteness,
    ValueStatus,
    build_daily_series,
    completion_factor,
    get_data_completeness,
    has_incomplete_data,
    has_projected_data,
    local_clock,
    project,
)
from ai_usage_sync.core.token_counter import TokenUsage
from ai_usage_sync.storage.models import UsageRecord

TODAY = date(2025, 1, 15)  # a Wednesday
TOOL = "claude_code"


def _series(values):
    """Build points from {date: tokens} for a single tool."""
    return [DailyUsagePoint(date=day, tools={TOOL: tokens}) for day, tokens in sorted(values.items())]


def _today_value(history, today_tokens, local_hour, last_data_date=TODAY - timedelta(days=1)):
    values = dict(history)
    values[TODAY] = today_tokens
    points = project(_series(values), {TOOL: ToolCompleteness(last_data_date)}, TODAY, local_hour=local_hour)
    return points[-1].tools[TOOL]


def _wednesdays(value):
    return {TODAY - timedelta(days=7): value, TODAY - timedelta(days=14): value}


class TestCompletionFactor:
    def test_before_window(self):
        assert completion_factor(6.5) == 0.0

    def test_after_window(self):
        assert completion_factor(19.0) == 1.0

    def test_inside_window(self):
        assert completion_factor(13.0) == pytest.approx(0.5)


class TestLocalClock:
    def test_date_and_hour_from_one_reading(self):
        """Date and hour are both read in the local timezone."""
        moment = datetime(2025, 1, 15, 23, 45, tzinfo=timezone(timedelta(hours=2)))
        local = moment.astimezone()

        today, hour = local_clock(moment)

        assert today == local.date()
        assert hour == pytest.approx(local.hour + local.minute / 60)


class TestTodayProjection:
    """Test blending of today's partial value."""

    def test_blend_without_cap(self):
        value = _today_value(_wednesdays(1000), 200, local_hour=8.0)

        assert value.status is ValueStatus.EXTRAPOLATED
        assert value.displayed == 1117
        assert value.actual == 200
        assert value.projected_from == 200

    def test_blend_capped_at_baseline_multiple(self):
        value = _today_value(_wednesdays(500), 400, local_hour=8.0)
        assert value.displayed == 750

    def test_before_working_hours_not_projected(self):
        value = _today_value(_wednesdays(1000), 0, local_hour=6.0)

        assert value.displayed == 0
        assert value.projected_from is None
        assert value.status is ValueStatus.INCOMPLETE

    def test_after_working_hours_shows_actual(self):
        value = _today_value(_wednesdays(1000), 640, local_hour=20.0)

        assert value.displayed == 640
        assert value.projected_from is None

    def test_after_working_hours_confirmed_data(self):
        value = _today_value(_wednesdays(1000), 640, local_hour=20.0, last_data_date=TODAY)
        assert value.displayed == 640
        assert value.status is ValueStatus.CONFIRMED

    def test_zero_so_far_shows_baseline(self):
        value = _today_value(_wednesdays(1000), 0, local_hour=10.0)

        assert value.displayed == 1000
        assert value.status is ValueStatus.ESTIMATED
        assert value.projected_from == 0

    def test_no_baseline_uses_uncapped_extrapolation(self):
        value = _today_value({}, 100, local_hour=8.0)
        assert value.displayed == 1200


class TestPastDates:
    """Test non-today dates."""

    def test_complete_dates_pass_through(self):
        points = project(_series(_wednesdays(1000)), {TOOL: ToolCompleteness(TODAY)}, TODAY, local_hour=12)

        assert all(point.tools[TOOL].status is ValueStatus.CONFIRMED for point in points)
        assert not has_incomplete_data(points)
        assert not has_projected_data(points)

    def test_incomplete_past_date_shows_same_weekday_baseline(self):
        tuesday = TODAY - timedelta(days=1)
        values = {
            tuesday - timedelta(days=7): 300,
            tuesday - timedelta(days=14): 500,
            TODAY - timedelta(days=3): 5000,
            tuesday: 20,
        }
        points = project(
            _series(values), {TOOL: ToolCompleteness(tuesday - timedelta(days=1))}, TODAY, local_hour=12,
        )

        value = points[-1].tools[TOOL]
        assert value.displayed == 400
        assert value.actual == 20
        assert value.status is ValueStatus.ESTIMATED
        assert points[-1].is_incomplete
        assert has_projected_data(points)

    def test_incomplete_past_date_without_history_keeps_raw(self):
        points = project(_series({TODAY - timedelta(days=1): 42}), {TOOL: ToolCompleteness(None)}, TODAY)

        value = points[0].tools[TOOL]
        assert value.displayed == 42
        assert value.status is ValueStatus.INCOMPLETE
        assert has_incomplete_data(points)
        assert not has_projected_data(points)

    def test_cost_passed_through(self):
        point = DailyUsagePoint(date=TODAY - timedelta(days=2), tools={TOOL: 10}, cost=1.25)
        projected = project([point], {TOOL: ToolCompleteness(TODAY)}, TODAY, local_hour=12)
        assert projected[0].cost == 1.25
        assert projected[0].displayed_total == 10

    def test_custom_working_hours(self):
        config = ProjectionConfig(work_start_hour=9, work_end_hour=17)
        values = _wednesdays(1000)
        values[TODAY] = 100
        points = project(_series(values), {TOOL: ToolCompleteness(None)}, TODAY, local_hour=8.5, config=config)
        assert points[-1].tools[TOOL].displayed == 100


class TestSeriesFromStore:
    def test_build_series_fills_missing_days(self, repository):
        repository.insert_usage_record(UsageRecord(
            date=date(2025, 1, 2), identity="u@example.com", tool=TOOL, model="sonnet-4",
            tokens=TokenUsage(input_tokens=10, output_tokens=5), cost=0.5,
        ))

        series = build_daily_series(repository, date(2025, 1, 1), date(2025, 1, 3), [TOOL, "cursor"])

        assert [point.tools for point in series] == [
            {TOOL: 0, "cursor": 0},
            {TOOL: 15, "cursor": 0},
            {TOOL: 0, "cursor": 0},
        ]
        assert series[1].cost == 0.5

    def test_completeness_from_latest_dates(self, repository):
        repository.insert_usage_record(UsageRecord(
            date=date(2025, 1, 2), identity=None, tool=TOOL, model="sonnet-4",
            tokens=TokenUsage(input_tokens=1), cost=0.0,
        ))

        completeness = get_data_completeness(repository, [TOOL, "cursor"])

        assert completeness[TOOL].last_data_date == date(2025, 1, 2)
        assert completeness["cursor"].last_data_date is None
