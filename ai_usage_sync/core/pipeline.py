"""
Shared ingestion pipeline: provider results -> identities -> rows -> store.

Rows are written one statement at a time. A failure late in a batch leaves
earlier rows in place, and a single bad row is skipped rather than
aborting the rest.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional, Tuple

from ai_usage_sync.storage.models import UsageRecord
from ai_usage_sync.storage.repository import UsageRepository

from .aggregator import aggregate
from .errors import RowInsertError
from .identity import IdentityResolver

lib_logger = logging.getLogger("ai_usage_sync")

MAX_SUMMARY_ERRORS = 3


@dataclass
class SyncResult:
    """Structured outcome of a sync job."""
    success: bool = True
    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    synced_range: Optional[Tuple[date, date]] = None
    rate_limited: bool = False

    def fail(self, message: str) -> None:
        self.success = False
        self.errors.append(message)

    def summary(self) -> str:
        """User-visible one-line description."""
        counts = f"imported {self.imported}, skipped {self.skipped}"
        if self.rate_limited:
            return f"Rate limited ({counts}), will continue on next run"
        if not self.success:
            return f"Failed ({counts}): " + "; ".join(self.errors[:MAX_SUMMARY_ERRORS])
        if self.synced_range is None:
            return "Already up to date"
        start, end = self.synced_range
        return f"Synced {start.isoformat()} to {end.isoformat()}: {counts}"


def store_record(repository: UsageRepository, record: UsageRecord) -> None:
    """Upsert one row, wrapping row-level failures in RowInsertError."""
    try:
        repository.insert_usage_record(record)
    except (sqlite3.IntegrityError, sqlite3.InterfaceError, ValueError) as e:
        raise RowInsertError(f"Failed to store row {record.key}: {e}", key=record.key) from e


def ingest_results(provider, repository: UsageRepository, results: Iterable, result: SyncResult) -> int:
    """Resolve, aggregate and store raw provider results.

    Args:
        provider: ProviderClient the results came from
        repository: Target repository
        results: Raw UsageResult objects
        result: SyncResult to accumulate counts into

    Returns:
        Number of rows stored by this call
    """
    resolver = IdentityResolver(repository, provider.tool)
    records, skipped = aggregate(results, provider.tool, resolver)
    result.skipped += skipped

    stored = 0
    for record in records:
        try:
            store_record(repository, record)
        except RowInsertError as e:
            lib_logger.warning(f"Skipping row: {e}")
            result.skipped += 1
            continue
        stored += 1

    result.imported += stored
    return stored
