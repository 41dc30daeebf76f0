"""
Data models for storage layer.

Defines the persisted entities: usage rows, identity mappings and per-provider
sync state.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Tuple

from ai_usage_sync.core.token_counter import TokenUsage

# (date, identity, tool, model, provider_record_id)
UsageKey = Tuple[date, Optional[str], str, str, Optional[str]]


@dataclass(frozen=True)
class UsageRecord:
    """One aggregated usage row.

    Rows are upserted, never appended twice: the tuple returned by ``key``
    is unique in the store. ``identity`` of None means unattributed usage
    and is never replaced by a sentinel string.
    """
    date: date
    identity: Optional[str]
    tool: str
    model: str
    tokens: TokenUsage
    cost: float
    provider_record_id: Optional[str] = None
    raw_model: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate key fields."""
        if not self.tool:
            raise ValueError("tool is required")
        if not self.model:
            raise ValueError("model is required")
        if self.identity is not None and not self.identity.strip():
            raise ValueError("identity must be None or a non-empty string")
        if self.provider_record_id is not None and not self.provider_record_id.strip():
            raise ValueError("provider_record_id must be None or a non-empty string")
        if self.cost < 0:
            raise ValueError("cost cannot be negative")

    @property
    def key(self) -> UsageKey:
        return (self.date, self.identity, self.tool, self.model, self.provider_record_id)

    @property
    def input_tokens(self) -> int:
        return self.tokens.input_tokens

    @property
    def cache_write_tokens(self) -> int:
        return self.tokens.cache_write_tokens

    @property
    def cache_read_tokens(self) -> int:
        return self.tokens.cache_read_tokens

    @property
    def output_tokens(self) -> int:
        return self.tokens.output_tokens

    @property
    def total_tokens(self) -> int:
        return self.tokens.billable_tokens


@dataclass(frozen=True)
class IdentityMapping:
    """Maps a provider-specific actor id to a normalized identity."""
    tool: str
    external_id: str
    identity: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class SyncStateRow:
    """Persisted sync state for one provider.

    ``forward_cursor`` is always a UTC datetime marking the end of the last
    fully synced period. ``last_sync_at`` is wall-clock freshness only.
    """
    provider: str
    forward_cursor: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    backfill_complete: bool = False
