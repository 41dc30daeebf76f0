"""
OpenAI admin API adapter.

Completions usage is bucketed per day and grouped by user and model; the
reported user ids are resolved through the organization user directory.
"""

from datetime import date, datetime, timezone
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
    int_field,
    to_utc,
)

DIRECTORY_PAGE_SIZE = 100


class OpenAIProvider(ProviderClient):
    name = "openai"
    display_name = "OpenAI"
    tool = "openai"
    granularity = Granularity.DAY
    base_url = "https://api.openai.com"

    def auth_headers(self, credential: ProviderCredential) -> Dict[str, str]:
        return {"Authorization": f"Bearer {credential.secret}"}

    def fetch_page(
        self,
        credential: ProviderCredential,
        start: datetime,
        end: datetime,
        page_token: Optional[Any],
    ) -> httpx.Response:
        params = [
            ("start_time", str(int(to_utc(start).timestamp()))),
            ("end_time", str(int(to_utc(end).timestamp()))),
            ("bucket_width", "1d"),
            ("group_by[]", "user_id"),
            ("group_by[]", "model"),
        ]
        if page_token:
            params.append(("page", page_token))
        return self._send("GET", "/v1/organization/usage/completions", credential, params=params)

    def parse_page(self, payload: Dict[str, Any], page_token: Optional[Any]) -> UsagePage:
        results = []
        for bucket in payload.get("data") or []:
            usage_date = self.bucket_to_date(bucket)
            for item in bucket.get("results") or []:
                model = item.get("model")
                if not model:
                    continue
                # input_tokens already includes the cached portion
                cached = int_field(item, "input_cached_tokens")
                tokens = TokenUsage(
                    input_tokens=max(int_field(item, "input_tokens") - cached, 0),
                    cache_read_tokens=cached,
                    output_tokens=int_field(item, "output_tokens"),
                )
                user_id = item.get("user_id") or None
                results.append(UsageResult(
                    usage_date=usage_date,
                    model=model,
                    tokens=tokens,
                    external_id=user_id,
                    provider_record_id=user_id,
                ))

        next_page = payload.get("next_page") if payload.get("has_more") else None
        return UsagePage(results=results, next_page=next_page or None)

    def bucket_to_date(self, bucket: Dict[str, Any]) -> date:
        return datetime.fromtimestamp(int(bucket["start_time"]), tz=timezone.utc).date()

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    def list_users(self, credential: ProviderCredential) -> Dict[str, str]:
        users: Dict[str, str] = {}
        after = None
        while True:
            params: Dict[str, Any] = {"limit": DIRECTORY_PAGE_SIZE}
            if after:
                params["after"] = after
            payload = self._get_json("/v1/organization/users", credential, params=params)
            for user in payload.get("data") or []:
                if user.get("id") and user.get("email"):
                    users[user["id"]] = user["email"]
            after = payload.get("last_id")
            if not payload.get("has_more") or not after:
                return users

    def list_actors(self, credential: ProviderCredential) -> List[DirectoryActor]:
        # usage is grouped by user id, so every user is its own actor
        return [DirectoryActor(actor_id=user_id, owner_id=user_id) for user_id in self.list_users(credential)]

    def lookup_identity(self, external_id: str, credential: ProviderCredential) -> Optional[str]:
        try:
            user = self._get_json(f"/v1/organization/users/{external_id}", credential)
        except ProviderAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return user.get("email") or None
