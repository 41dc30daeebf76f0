"""
Tests for the sync state tracker and status descriptions.
"""

from datetime import date, datetime, timezone

import pytest

from ai_usage_sync.core.sync_state import (
    BACKFILL_COMPLETE,
    BACKFILL_IN_PROGRESS,
    BACKFILL_NOT_STARTED,
    FORWARD_BEHIND,
    FORWARD_NEVER_SYNCED,
    FORWARD_UP_TO_DATE,
    BackfillState,
    ForwardState,
    SyncState,
    advance_forward_cursor,
    describe_status,
    get_sync_state,
    mark_backfill_complete,
    reset_backfill,
)
from ai_usage_sync.core.token_counter import TokenUsage
from ai_usage_sync.providers.base import Granularity
from ai_usage_sync.storage.models import UsageRecord

NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)
TARGET = date(2025, 1, 1)


def _state(cursor=None, oldest=None, complete=False):
    return SyncState(
        provider="anthropic",
        forward=ForwardState(cursor=cursor),
        backfill=BackfillState(oldest_date=oldest, complete=complete),
    )


class TestGetSyncState:
    def test_oldest_date_derived_from_rows(self, repository):
        for day in (date(2025, 1, 12), date(2025, 1, 5)):
            repository.insert_usage_record(UsageRecord(
                date=day, identity=None, tool="claude_code", model="sonnet-4",
                tokens=TokenUsage(input_tokens=1), cost=0.0,
            ))

        state = get_sync_state(repository, "anthropic")

        assert state.backfill_oldest_date == date(2025, 1, 5)
        assert state.backfill_complete is False
        assert state.last_forward_cursor is None

    def test_axes_are_independent(self, repository):
        cursor = datetime(2025, 3, 10, tzinfo=timezone.utc)
        advance_forward_cursor(repository, "openai", cursor)
        mark_backfill_complete(repository, "openai")

        reset_backfill(repository, "openai")

        state = get_sync_state(repository, "openai")
        assert state.backfill_complete is False
        assert state.last_forward_cursor == cursor

    def test_unknown_provider_rejected(self, repository):
        with pytest.raises(ValueError, match="Unknown provider"):
            get_sync_state(repository, "bard")


class TestDescribeStatus:
    def test_never_synced_not_started(self):
        status = describe_status(_state(), Granularity.DAY, TARGET, NOW)
        assert status.forward_status == FORWARD_NEVER_SYNCED
        assert status.backfill_status == BACKFILL_NOT_STARTED
        assert status.backfill_progress == 0

    def test_daily_up_to_date_when_yesterday_covered(self):
        cursor = datetime(2025, 3, 10, tzinfo=timezone.utc)
        assert describe_status(_state(cursor), Granularity.DAY, TARGET, NOW).forward_status == FORWARD_UP_TO_DATE

    def test_daily_behind(self):
        cursor = datetime(2025, 3, 8, tzinfo=timezone.utc)
        assert describe_status(_state(cursor), Granularity.DAY, TARGET, NOW).forward_status == FORWARD_BEHIND

    def test_hourly_freshness_window(self):
        fresh = datetime(2025, 3, 10, 13, 30, tzinfo=timezone.utc)
        stale = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
        assert describe_status(_state(fresh), Granularity.HOUR, TARGET, NOW).forward_status == FORWARD_UP_TO_DATE
        assert describe_status(_state(stale), Granularity.HOUR, TARGET, NOW).forward_status == FORWARD_BEHIND

    def test_backfill_progress(self):
        # 68 days between target and today, 34 already stored
        status = describe_status(_state(oldest=date(2025, 2, 4)), Granularity.DAY, TARGET, NOW)
        assert status.backfill_status == BACKFILL_IN_PROGRESS
        assert status.backfill_progress == 50

    def test_complete_flag_wins(self):
        status = describe_status(_state(oldest=date(2025, 3, 1), complete=True), Granularity.DAY, TARGET, NOW)
        assert status.backfill_status == BACKFILL_COMPLETE
        assert status.backfill_progress == 100

    def test_target_reached_is_complete(self):
        status = describe_status(_state(oldest=TARGET), Granularity.DAY, TARGET, NOW)
        assert status.backfill_status == BACKFILL_COMPLETE


class TestGranularity:
    def test_day_period_end_is_start_of_today(self):
        assert Granularity.DAY.current_period_end(NOW) == datetime(2025, 3, 10, tzinfo=timezone.utc)

    def test_hour_period_end_is_start_of_hour(self):
        moment = datetime(2025, 3, 10, 15, 42, 7, tzinfo=timezone.utc)
        assert Granularity.HOUR.current_period_end(moment) == NOW

    def test_naive_datetimes_treated_as_utc(self):
        assert Granularity.DAY.floor(datetime(2025, 3, 10, 23, 59)) == datetime(2025, 3, 10, tzinfo=timezone.utc)
