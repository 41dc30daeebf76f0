"""
Shared fixtures: a temporary database and a scripted provider.
"""

import os
from datetime import date, datetime
from typing import Callable, List, Optional

import pytest

from ai_usage_sync.config.credentials import ProviderCredential
from ai_usage_sync.core.token_counter import TokenUsage
from ai_usage_sync.providers.base import Granularity, ProviderClient, UsagePage, UsageResult
from ai_usage_sync.storage.repository import UsageRepository, initialize_schema


@pytest.fixture
def db_path(tmp_path):
    """Initialized SQLite database in a temporary directory."""
    path = os.path.join(str(tmp_path), "test.db")
    initialize_schema(path)
    return path


@pytest.fixture
def repository(db_path):
    return UsageRepository(db_path)


def make_result(
    usage_date: date,
    input_tokens: int = 100,
    output_tokens: int = 50,
    model: str = "claude-sonnet-4-20250514",
    external_id: Optional[str] = "key-1",
    identity: Optional[str] = None,
    cost: Optional[float] = None,
) -> UsageResult:
    return UsageResult(
        usage_date=usage_date,
        model=model,
        tokens=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
        cost=cost,
        external_id=external_id,
        identity=identity,
        provider_record_id=external_id,
    )


class ScriptedProvider(ProviderClient):
    """Provider whose fetch_usage is answered by a test-supplied function.

    Registered under the anthropic name so sync state lookups resolve the
    claude_code tool.
    """

    name = "anthropic"
    display_name = "Scripted"
    tool = "claude_code"
    granularity = Granularity.DAY
    supports_identity_lookup = False

    def __init__(self, handler: Callable[[datetime, datetime], List[UsageResult]], **kwargs):
        kwargs.setdefault("credentials", [ProviderCredential("anthropic", "default", "sk-test")])
        kwargs.setdefault("sleep", lambda seconds: None)
        super().__init__(**kwargs)
        self.handler = handler
        self.calls = []

    def fetch_usage(self, start, end, credentials=None):
        self.calls.append((start, end))
        return self.handler(start, end)

    def auth_headers(self, credential):
        return {}

    def fetch_page(self, credential, start, end, page_token):
        raise NotImplementedError

    def parse_page(self, payload, page_token):
        return UsagePage()

    def bucket_to_date(self, bucket):
        return date.fromisoformat(bucket["date"])
