"""
Per-provider sync state.

Two independent axes, each written only by its owning job:

- forward: the cursor (end of the last fully synced period) and the
  last wall-clock sync time; owned by the forward sync job
- backfill: the sticky completion flag; owned by the backfill job and
  cleared only by an explicit reset

The oldest backfilled date is never stored. It is always derived from the
usage rows themselves.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from ai_usage_sync.providers import PROVIDERS, Granularity
from ai_usage_sync.storage.repository import UsageRepository

FORWARD_NEVER_SYNCED = "never_synced"
FORWARD_UP_TO_DATE = "up_to_date"
FORWARD_BEHIND = "behind"

BACKFILL_NOT_STARTED = "not_started"
BACKFILL_IN_PROGRESS = "in_progress"
BACKFILL_COMPLETE = "complete"

HOURLY_FRESHNESS = timedelta(hours=2)


@dataclass(frozen=True)
class ForwardState:
    cursor: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None

    @property
    def never_synced(self) -> bool:
        return self.cursor is None


@dataclass(frozen=True)
class BackfillState:
    oldest_date: Optional[date] = None
    complete: bool = False


@dataclass(frozen=True)
class SyncState:
    """Combined view of both axes for one provider."""
    provider: str
    forward: ForwardState
    backfill: BackfillState

    @property
    def last_forward_cursor(self) -> Optional[datetime]:
        return self.forward.cursor

    @property
    def backfill_oldest_date(self) -> Optional[date]:
        return self.backfill.oldest_date

    @property
    def backfill_complete(self) -> bool:
        return self.backfill.complete


@dataclass(frozen=True)
class SyncStatus:
    """Presentation-level status derived from a SyncState."""
    forward_status: str
    backfill_status: str
    backfill_progress: int


def _tool_for(provider_name: str) -> str:
    if provider_name not in PROVIDERS:
        raise ValueError(f"Unknown provider '{provider_name}'")
    return PROVIDERS[provider_name].tool


def get_forward_state(repository: UsageRepository, provider_name: str) -> ForwardState:
    row = repository.get_sync_state(provider_name)
    return ForwardState(cursor=row.forward_cursor, last_sync_at=row.last_sync_at)


def get_backfill_state(repository: UsageRepository, provider_name: str) -> BackfillState:
    """Oldest stored date (derived, never cached) plus the persisted completion flag."""
    row = repository.get_sync_state(provider_name)
    return BackfillState(
        oldest_date=repository.get_oldest_date(_tool_for(provider_name)),
        complete=row.backfill_complete,
    )


def get_sync_state(repository: UsageRepository, provider_name: str) -> SyncState:
    """Return both sync axes for a provider.

    Args:
        repository: Repository to read from
        provider_name: Registered provider name

    Returns:
        SyncState with forward cursor, derived oldest date and completion flag
    """
    return SyncState(
        provider=provider_name,
        forward=get_forward_state(repository, provider_name),
        backfill=get_backfill_state(repository, provider_name),
    )


def advance_forward_cursor(
    repository: UsageRepository,
    provider_name: str,
    cursor: datetime,
    synced_at: Optional[datetime] = None,
) -> None:
    """Record a successful forward sync through ``cursor``. Never moves backward."""
    repository.advance_forward_cursor(provider_name, cursor, synced_at or datetime.now(timezone.utc))


def mark_backfill_complete(repository: UsageRepository, provider_name: str) -> None:
    repository.set_backfill_complete(provider_name, True)


def reset_backfill(repository: UsageRepository, provider_name: str) -> None:
    """Clear the completion flag so the backfill job walks further back again."""
    _tool_for(provider_name)
    repository.set_backfill_complete(provider_name, False)


def describe_status(
    state: SyncState,
    granularity: Granularity,
    target_date: date,
    now: Optional[datetime] = None,
) -> SyncStatus:
    """Derive forward/backfill statuses and backfill progress for display.

    Daily providers are up to date once the cursor covers yesterday; hourly
    providers once the cursor is within two hours of now. Backfill progress
    is the share of days between today and ``target_date`` already stored.
    """
    now = now or datetime.now(timezone.utc)

    cursor = state.forward.cursor
    if cursor is None:
        forward_status = FORWARD_NEVER_SYNCED
    elif granularity is Granularity.DAY:
        caught_up = cursor >= granularity.current_period_end(now)
        forward_status = FORWARD_UP_TO_DATE if caught_up else FORWARD_BEHIND
    else:
        caught_up = now - cursor <= HOURLY_FRESHNESS
        forward_status = FORWARD_UP_TO_DATE if caught_up else FORWARD_BEHIND

    oldest = state.backfill.oldest_date
    today = now.date()
    if state.backfill.complete or (oldest is not None and oldest <= target_date):
        return SyncStatus(forward_status, BACKFILL_COMPLETE, 100)
    if oldest is None:
        return SyncStatus(forward_status, BACKFILL_NOT_STARTED, 0)

    total_days = (today - target_date).days
    done_days = (today - oldest).days
    progress = int(done_days * 100 / total_days) if total_days > 0 else 100
    return SyncStatus(forward_status, BACKFILL_IN_PROGRESS, max(0, min(progress, 99)))
