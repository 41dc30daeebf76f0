"""
Anthropic admin API adapter (Claude Code usage).

Usage comes from the organization usage report, bucketed per day and
grouped by API key and model. API keys are resolved to the email of the
user who created them.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

import httpx

from ai_usage_sync.config.credentials import ProviderCredential
from ai_usage_sync.core.errors import ProviderAPIError
from ai_usage_sync.core.token_counter import TokenUsage

from .base import (
    DirectoryActor,
    Granularity,
    ProviderClient,
    UsagePage,
    UsageResult,
    format_rfc3339,
    int_field,
)

API_VERSION = "2023-06-01"
DIRECTORY_PAGE_SIZE = 100


class AnthropicProvider(ProviderClient):
    name = "anthropic"
    display_name = "Anthropic"
    tool = "claude_code"
    granularity = Granularity.DAY
    base_url = "https://api.anthropic.com"

    def auth_headers(self, credential: ProviderCredential) -> Dict[str, str]:
        return {
            "X-Api-Key": credential.secret,
            "anthropic-version": API_VERSION,
        }

    def fetch_page(
        self,
        credential: ProviderCredential,
        start: datetime,
        end: datetime,
        page_token: Optional[Any],
    ) -> httpx.Response:
        params = [
            ("starting_at", format_rfc3339(start)),
            ("ending_at", format_rfc3339(end)),
            ("bucket_width", "1d"),
            ("group_by[]", "api_key_id"),
            ("group_by[]", "model"),
        ]
        if page_token:
            params.append(("page", page_token))
        return self._send("GET", "/v1/organizations/usage_report/messages", credential, params=params)

    def parse_page(self, payload: Dict[str, Any], page_token: Optional[Any]) -> UsagePage:
        results = []
        for bucket in payload.get("data") or []:
            usage_date = self.bucket_to_date(bucket)
            for item in bucket.get("results") or []:
                model = item.get("model")
                if not model:
                    continue
                cache_creation = item.get("cache_creation") or {}
                tokens = TokenUsage(
                    input_tokens=int_field(item, "uncached_input_tokens"),
                    cache_write_tokens=(
                        int_field(cache_creation, "ephemeral_5m_input_tokens")
                        + int_field(cache_creation, "ephemeral_1h_input_tokens")
                    ),
                    cache_read_tokens=int_field(item, "cache_read_input_tokens"),
                    output_tokens=int_field(item, "output_tokens"),
                )
                api_key_id = item.get("api_key_id") or None
                results.append(UsageResult(
                    usage_date=usage_date,
                    model=model,
                    tokens=tokens,
                    external_id=api_key_id,
                    provider_record_id=api_key_id,
                ))

        next_page = payload.get("next_page") if payload.get("has_more") else None
        return UsagePage(results=results, next_page=next_page or None)

    def bucket_to_date(self, bucket: Dict[str, Any]) -> date:
        return date.fromisoformat(bucket["starting_at"][:10])

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    def _list_all(self, path: str, credential: ProviderCredential, extra: Optional[Dict[str, Any]] = None):
        after_id = None
        while True:
            params: Dict[str, Any] = {"limit": DIRECTORY_PAGE_SIZE}
            if extra:
                params.update(extra)
            if after_id:
                params["after_id"] = after_id
            payload = self._get_json(path, credential, params=params)
            yield from payload.get("data") or []
            after_id = payload.get("last_id")
            if not payload.get("has_more") or not after_id:
                return

    def list_users(self, credential: ProviderCredential) -> Dict[str, str]:
        return {
            user["id"]: user["email"]
            for user in self._list_all("/v1/organizations/users", credential)
            if user.get("id") and user.get("email")
        }

    def list_actors(self, credential: ProviderCredential) -> List[DirectoryActor]:
        actors = []
        for key in self._list_all("/v1/organizations/api_keys", credential, {"status": "active"}):
            creator = (key.get("created_by") or {}).get("id")
            if key.get("status", "active") != "active" or not key.get("id") or not creator:
                continue
            actors.append(DirectoryActor(actor_id=key["id"], owner_id=creator))
        return actors

    def lookup_identity(self, external_id: str, credential: ProviderCredential) -> Optional[str]:
        """Resolve an API key id to its creator's email with one credential."""
        try:
            key = self._get_json(f"/v1/organizations/api_keys/{external_id}", credential)
            creator = (key.get("created_by") or {}).get("id")
            if not creator:
                return None
            user = self._get_json(f"/v1/organizations/users/{creator}", credential)
        except ProviderAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return user.get("email") or None
