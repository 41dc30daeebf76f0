"""
Cursor team admin API adapter.

Cursor reports individual usage events with the user's email already
attached, so no identity resolution is needed. The events endpoint allows
20 requests per minute, hence the fixed delay between pages.
"""

import base64
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ai_usage_sync.config.credentials import ProviderCredential
from ai_usage_sync.core.token_counter import TokenUsage

from .base import Granularity, ProviderClient, UsagePage, UsageResult, int_field, to_utc

PAGE_SIZE = 1000


def _epoch_ms(moment: datetime) -> int:
    return int(to_utc(moment).timestamp() * 1000)


class CursorProvider(ProviderClient):
    name = "cursor"
    display_name = "Cursor"
    tool = "cursor"
    granularity = Granularity.HOUR
    base_url = "https://api.cursor.com"
    default_request_delay = 3.0
    supports_identity_lookup = False

    def auth_headers(self, credential: ProviderCredential) -> Dict[str, str]:
        token = base64.b64encode(f"{credential.secret}:".encode()).decode()
        return {"Authorization": f"Basic {token}"}

    def fetch_page(
        self,
        credential: ProviderCredential,
        start: datetime,
        end: datetime,
        page_token: Optional[Any],
    ) -> httpx.Response:
        body = {
            "startDate": _epoch_ms(start),
            "endDate": _epoch_ms(end),
            "page": page_token or 1,
            "pageSize": PAGE_SIZE,
        }
        return self._send("POST", "/teams/filtered-usage-events", credential, json=body)

    def parse_page(self, payload: Dict[str, Any], page_token: Optional[Any]) -> UsagePage:
        results = []
        for event in payload.get("usageEvents") or []:
            model = event.get("model")
            if not model or not event.get("timestamp"):
                continue
            usage = event.get("tokenUsage") or {}
            total_cents = usage.get("totalCents")
            results.append(UsageResult(
                usage_date=self.bucket_to_date(event),
                model=model,
                tokens=TokenUsage(
                    input_tokens=int_field(usage, "inputTokens"),
                    cache_write_tokens=int_field(usage, "cacheWriteTokens"),
                    cache_read_tokens=int_field(usage, "cacheReadTokens"),
                    output_tokens=int_field(usage, "outputTokens"),
                ),
                cost=float(total_cents) / 100 if total_cents is not None else None,
                identity=(event.get("userEmail") or "").strip() or None,
            ))

        pagination = payload.get("pagination") or {}
        next_page = (page_token or 1) + 1 if pagination.get("hasNextPage") else None
        return UsagePage(results=results, next_page=next_page)

    def bucket_to_date(self, bucket: Dict[str, Any]) -> date:
        return datetime.fromtimestamp(int(bucket["timestamp"]) / 1000, tz=timezone.utc).date()
