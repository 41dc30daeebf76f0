"""
Aggregation of raw provider results into stored usage rows.

Providers emit several granular results per user per day (one per page,
per bucket or per event). This module collapses them into exactly one row
per (date, identity, tool, model, provider_record_id).
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ai_usage_sync.storage.models import UsageKey, UsageRecord

from .model_names import normalize_model_name
from .pricing import calculate_cost
from .token_counter import TokenUsage

lib_logger = logging.getLogger("ai_usage_sync")

KEY_SEPARATOR = "\x00"

Resolver = Callable[[str], Optional[str]]


def make_key(
    usage_date: date,
    identity: Optional[str],
    tool: str,
    model: str,
    provider_record_id: Optional[str],
) -> str:
    """Encode a usage key as a NUL-separated string.

    NUL never occurs in emails, model names or provider ids, so the encoding
    is unambiguous. None is encoded as an empty field.

    Raises:
        ValueError: If any part contains the separator
    """
    parts = [usage_date.isoformat(), identity or "", tool, model, provider_record_id or ""]
    for part in parts:
        if KEY_SEPARATOR in part:
            raise ValueError(f"Key part contains NUL: {part!r}")
    return KEY_SEPARATOR.join(parts)


def split_key(key: str) -> UsageKey:
    """Decode a key produced by make_key."""
    parts = key.split(KEY_SEPARATOR)
    if len(parts) != 5:
        raise ValueError(f"Malformed usage key: {key!r}")
    usage_date, identity, tool, model, record_id = parts
    return (date.fromisoformat(usage_date), identity or None, tool, model, record_id or None)


@dataclass
class _Accumulator:
    tokens: TokenUsage
    cost: float
    raw_model: str


def aggregate(
    results: Iterable,
    tool: str,
    resolve: Optional[Resolver] = None,
) -> Tuple[List[UsageRecord], int]:
    """Collapse raw results into one UsageRecord per composite key.

    Results whose tokens sum to zero are dropped and counted as skipped,
    as are rows that fail validation (e.g. a negative provider cost).
    Identity comes from the result itself when the provider reports one,
    otherwise from ``resolve(external_id)``; unresolved stays None.

    Args:
        results: UsageResult objects from a provider
        tool: Tool name stored on each row
        resolve: Lookup from external id to identity

    Returns:
        Tuple of (records ordered by key, skipped result count)
    """
    groups: Dict[UsageKey, _Accumulator] = {}
    skipped = 0

    for result in results:
        if result.tokens.total_tokens == 0:
            skipped += 1
            continue

        identity = result.identity
        if identity is None and result.external_id and resolve is not None:
            identity = resolve(result.external_id)

        model = normalize_model_name(result.model)
        cost = result.cost if result.cost is not None else calculate_cost(result.model, result.tokens)
        key: UsageKey = (result.usage_date, identity, tool, model, result.provider_record_id)

        existing = groups.get(key)
        if existing is None:
            groups[key] = _Accumulator(tokens=result.tokens, cost=cost, raw_model=result.model)
        else:
            existing.tokens = existing.tokens + result.tokens
            existing.cost += cost

    records = []
    for key, acc in groups.items():
        try:
            records.append(UsageRecord(
                date=key[0],
                identity=key[1],
                tool=key[2],
                model=key[3],
                provider_record_id=key[4],
                tokens=acc.tokens,
                cost=round(acc.cost, 6),
                raw_model=acc.raw_model,
            ))
        except ValueError as e:
            lib_logger.warning(f"Skipping malformed {tool} row {key}: {e}")
            skipped += 1
    records.sort(key=lambda r: (r.date, r.identity or "", r.tool, r.model, r.provider_record_id or ""))

    if skipped:
        lib_logger.debug(f"Aggregated {len(records)} rows for {tool}, skipped {skipped} results")
    return records, skipped
