"""
Backfill job: resumable backward walk toward a historical target date.

Each invocation starts the day before the oldest stored date (or
yesterday when nothing is stored yet) and walks backward in bounded
windows. Progress is never stored separately: the next invocation
re-derives its starting point from the data, so an aborted run resumes
exactly where the stored rows end.

No provider says "there is no older data". Exhaustion is inferred from a
run of consecutive empty windows, and only small windows count toward it,
because one empty large window may just be a real gap in usage. Reaching
the target date through a run of small empty windows counts as exhausted
too, however short that run is.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from ai_usage_sync.config.loader import Settings
from ai_usage_sync.providers.base import ProviderClient
from ai_usage_sync.storage.repository import UsageRepository

from .errors import RateLimitedError, UsageSyncError
from .pipeline import SyncResult, ingest_results
from .sync_state import get_backfill_state, mark_backfill_complete

lib_logger = logging.getLogger("ai_usage_sync")

ONE_DAY = timedelta(days=1)


@dataclass
class BackfillResult(SyncResult):
    """SyncResult plus backfill progress."""
    last_processed_date: Optional[date] = None
    complete: bool = False
    windows: int = 0

    def summary(self) -> str:
        if self.complete and self.success and not self.rate_limited:
            return f"Backfill complete (imported {self.imported}, skipped {self.skipped})"
        return super().summary()


def _day_start(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def backfill(
    provider: ProviderClient,
    repository: UsageRepository,
    settings: Optional[Settings] = None,
    target_date: Optional[date] = None,
    today: Optional[date] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BackfillResult:
    """Run one backfill invocation for a provider.

    Safe to call repeatedly. Never touches the forward cursor.

    Args:
        provider: Provider client to fetch from
        repository: Repository to store rows in
        settings: Sync settings (defaults when None)
        target_date: Oldest date to walk back to (configured target when None)
        today: Current UTC date, injectable for tests
        sleep: Sleep function used between windows

    Returns:
        BackfillResult; rate limiting sets ``rate_limited`` and is not a failure
    """
    settings = settings or Settings()
    config = settings.get_provider_config(provider.name).backfill
    target = target_date or config.target_date
    today = today or datetime.now(timezone.utc).date()
    result = BackfillResult()

    try:
        provider.require_credentials()
        state = get_backfill_state(repository, provider.name)

        if state.complete:
            lib_logger.info(f"{provider.display_name} backfill already marked complete")
            result.complete = True
            return result

        if state.oldest_date is not None and state.oldest_date <= target:
            lib_logger.info(
                f"{provider.display_name} has data back to {state.oldest_date}, target is {target}"
            )
            return result

        window_end = (state.oldest_date or today) - ONE_DAY
        first_end = window_end
        consecutive_empty = 0
        empty_run_small = True

        while result.windows < config.max_windows and window_end >= target:
            window_start = max(window_end - timedelta(days=config.window_days - 1), target)
            if result.windows and config.window_delay_seconds:
                sleep(config.window_delay_seconds)

            lib_logger.info(f"{provider.display_name} backfill window {window_start} -> {window_end}")
            results = provider.fetch_usage(_day_start(window_start), _day_start(window_end + ONE_DAY))
            ingest_results(provider, repository, results, result)

            result.windows += 1
            result.last_processed_date = window_start
            result.synced_range = (window_start, first_end)

            if results:
                consecutive_empty = 0
                empty_run_small = True
            else:
                consecutive_empty += 1
                small = (window_end - window_start).days + 1 <= config.small_window_days
                empty_run_small = empty_run_small and small
                if consecutive_empty >= config.stop_on_empty_days and small:
                    lib_logger.info(
                        f"{provider.display_name}: {consecutive_empty} consecutive empty windows, "
                        f"marking backfill complete"
                    )
                    mark_backfill_complete(repository, provider.name)
                    result.complete = True
                    break

            window_end = window_start - ONE_DAY

        if not result.complete and window_end < target and consecutive_empty and empty_run_small:
            # nothing between the target and the oldest stored data
            lib_logger.info(
                f"{provider.display_name}: reached {target} after {consecutive_empty} empty windows, "
                f"marking backfill complete"
            )
            mark_backfill_complete(repository, provider.name)
            result.complete = True
        elif not result.complete and consecutive_empty and consecutive_empty == result.windows:
            lib_logger.warning(
                f"{provider.display_name} backfill found no data in {result.windows} windows "
                f"without reaching the completion threshold"
            )

    except RateLimitedError as e:
        lib_logger.warning(f"{provider.display_name} backfill rate limited, will continue on next run")
        result.rate_limited = True
        result.errors.append(str(e))
    except UsageSyncError as e:
        lib_logger.error(f"{provider.display_name} backfill failed: {e}")
        result.fail(str(e))
    except Exception as e:
        lib_logger.exception(f"Unexpected error in {provider.display_name} backfill")
        result.fail(f"Unexpected error: {e}")

    return result
