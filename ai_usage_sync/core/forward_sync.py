"""
Forward sync job.

Fetches from one step before the stored cursor up to now, so late-arriving
provider data for the last synced period is picked up again. Rows are
daily, so for hourly providers the fetch start is widened to the start of
its UTC day; a partial day would otherwise overwrite the stored full day.
The cursor moves to the end of the last complete period only after
everything was fetched and stored; any failure leaves it where it was.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from ai_usage_sync.config.loader import Settings
from ai_usage_sync.providers.base import Granularity, ProviderClient, to_utc
from ai_usage_sync.storage.repository import UsageRepository

from .errors import RateLimitedError, UsageSyncError
from .identity import refresh_identities
from .pipeline import SyncResult, ingest_results
from .sync_state import advance_forward_cursor, get_forward_state

lib_logger = logging.getLogger("ai_usage_sync")


def sync_forward(
    provider: ProviderClient,
    repository: UsageRepository,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> SyncResult:
    """Run one forward sync for a provider.

    Args:
        provider: Provider client to fetch from
        repository: Repository to store rows and state in
        settings: Sync settings (defaults when None)
        now: Current time, injectable for tests

    Returns:
        SyncResult; expected failures are reported in it, never raised
    """
    settings = settings or Settings()
    config = settings.get_provider_config(provider.name)
    now = to_utc(now or datetime.now(timezone.utc))
    result = SyncResult()

    try:
        provider.require_credentials()

        granularity = provider.granularity
        period_end = granularity.current_period_end(now)
        state = get_forward_state(repository, provider.name)

        if state.cursor is not None and state.cursor >= period_end:
            lib_logger.info(f"{provider.display_name} already synced through {state.cursor.isoformat()}")
            return result

        if state.cursor is None:
            if config.forward.initial_lookback_days is not None:
                lookback = timedelta(days=config.forward.initial_lookback_days)
            else:
                lookback = granularity.default_initial_lookback
            start = period_end - lookback
        else:
            start = state.cursor - granularity.step
        # rows are stored per day, so every fetched day has to be fetched in full
        start = Granularity.DAY.floor(start)

        lib_logger.info(f"{provider.display_name} forward sync {start.isoformat()} -> {now.isoformat()}")
        results = provider.fetch_usage(start, now)
        ingest_results(provider, repository, results, result)

        advance_forward_cursor(repository, provider.name, period_end, now)
        result.synced_range = (start.date(), now.date())
        lib_logger.info(f"{provider.display_name}: {result.summary()}")

        if config.forward.refresh_identities:
            mapping = refresh_identities(provider, repository, settings)
            result.errors.extend(mapping.errors)

    except RateLimitedError as e:
        lib_logger.warning(f"{provider.display_name} forward sync rate limited, cursor unchanged")
        result.rate_limited = True
        result.fail(str(e))
    except UsageSyncError as e:
        lib_logger.error(f"{provider.display_name} forward sync failed: {e}")
        result.fail(str(e))
    except Exception as e:
        lib_logger.exception(f"Unexpected error in {provider.display_name} forward sync")
        result.fail(f"Unexpected error: {e}")

    return result
