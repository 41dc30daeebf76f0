"""
Tests for identity resolution and mapping refresh strategies.
"""

from datetime import date

import pytest

from ai_usage_sync.config.credentials import ProviderCredential
from ai_usage_sync.config.loader import IdentityConfig, Settings
from ai_usage_sync.core.errors import RateLimitedError
from ai_usage_sync.core.identity import IdentityResolver, refresh_identities, set_identity_mapping
from ai_usage_sync.core.token_counter import TokenUsage
from ai_usage_sync.providers.base import DirectoryActor
from ai_usage_sync.storage.models import UsageRecord

from conftest import ScriptedProvider

ORG_A = ProviderCredential("anthropic", "Org A", "sk-a")
ORG_B = ProviderCredential("anthropic", "Org B", "sk-b")


class DirectoryProvider(ScriptedProvider):
    """Provider with an in-memory directory per credential."""

    supports_identity_lookup = True

    def __init__(self, directory, rate_limit_lookups=False):
        super().__init__(lambda start, end: [], credentials=[ORG_A, ORG_B])
        self.directory = directory
        self.rate_limit_lookups = rate_limit_lookups
        self.lookups = []

    def lookup_identity(self, external_id, credential):
        self.lookups.append((external_id, credential.org_name))
        if self.rate_limit_lookups:
            raise RateLimitedError(self.name, "Scripted API rate limited")
        org = self.directory.get(credential.org_name, {})
        return org.get("keys", {}).get(external_id)

    def list_users(self, credential):
        return dict(self.directory.get(credential.org_name, {}).get("users", {}))

    def list_actors(self, credential):
        return [
            DirectoryActor(actor_id=actor_id, owner_id=owner)
            for actor_id, owner in self.directory.get(credential.org_name, {}).get("actors", {}).items()
        ]


def _unattributed(repository, record_id, day=date(2025, 1, 15)):
    repository.insert_usage_record(UsageRecord(
        date=day,
        identity=None,
        tool="claude_code",
        model="sonnet-4",
        tokens=TokenUsage(input_tokens=10),
        cost=0.0,
        provider_record_id=record_id,
    ))


class TestIdentityResolver:
    def test_resolves_persisted_mappings(self, repository):
        repository.set_identity_mapping("claude_code", "key-1", "u@example.com")
        repository.set_identity_mapping("openai", "user-1", "o@example.com")

        resolver = IdentityResolver(repository, "claude_code")

        assert resolver.resolve("key-1") == "u@example.com"
        assert resolver("user-1") is None
        assert resolver.resolve(None) is None
        assert len(resolver) == 1


class TestSetIdentityMapping:
    def test_retroactive_reattribution(self, repository):
        """Adding a mapping updates previously unattributed rows."""
        _unattributed(repository, "key-1")

        updated = set_identity_mapping(repository, "claude_code", "key-1", " u@example.com ")

        assert updated == 1
        assert repository.get_usage_records()[0].identity == "u@example.com"

    def test_empty_identity_rejected(self, repository):
        with pytest.raises(ValueError, match="identity"):
            set_identity_mapping(repository, "claude_code", "key-1", "   ")


class TestRefreshIdentities:
    """Test strategy selection and multi-org lookups."""

    def test_nothing_unmapped_is_noop(self, repository):
        provider = DirectoryProvider({})
        result = refresh_identities(provider, repository)

        assert result.success
        assert result.strategy is None
        assert provider.lookups == []

    def test_incremental_tries_each_credential(self, repository):
        """An id owned by the second org is resolved after the first misses."""
        _unattributed(repository, "key-b")
        provider = DirectoryProvider({"Org B": {"keys": {"key-b": "b@example.com"}}})

        result = refresh_identities(provider, repository)

        assert result.strategy == "incremental"
        assert result.created == 1
        assert provider.lookups == [("key-b", "Org A"), ("key-b", "Org B")]
        assert repository.get_usage_records()[0].identity == "b@example.com"

    def test_incremental_unresolved_stays_unattributed(self, repository):
        _unattributed(repository, "key-x")
        result = refresh_identities(DirectoryProvider({}), repository)

        assert result.success
        assert result.skipped == 1
        assert repository.get_unmapped_external_ids("claude_code") == ["key-x"]

    def test_full_resync_above_threshold(self, repository):
        for record_id in ("key-1", "key-2", "key-3"):
            _unattributed(repository, record_id)
        repository.set_identity_mapping("claude_code", "key-3", "c@example.com")
        directory = {
            "Org A": {
                "users": {"user-1": "a@example.com", "user-3": "c@example.com"},
                "actors": {"key-1": "user-1", "key-3": "user-3", "key-orphan": "user-gone"},
            },
            "Org B": {
                "users": {"user-2": "b@example.com"},
                "actors": {"key-2": "user-2"},
            },
        }
        settings = Settings(identity=IdentityConfig(incremental_threshold=1))

        result = refresh_identities(DirectoryProvider(directory), repository, settings)

        assert result.strategy == "full"
        assert result.created == 2
        assert result.skipped == 1
        identities = {r.provider_record_id: r.identity for r in repository.get_usage_records()}
        assert identities == {"key-1": "a@example.com", "key-2": "b@example.com", "key-3": "c@example.com"}

    def test_rate_limit_reported_not_raised(self, repository):
        _unattributed(repository, "key-1")
        result = refresh_identities(DirectoryProvider({}, rate_limit_lookups=True), repository)

        assert result.success is False
        assert "rate limited" in result.errors[0]
