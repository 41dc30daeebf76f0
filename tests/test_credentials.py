"""
Tests for provider credential loading from the environment.
"""

import json

import pytest

from ai_usage_sync.config.credentials import (
    ProviderCredential,
    load_provider_credentials,
    require_credentials,
)
from ai_usage_sync.core.errors import ConfigurationError


class TestLoadProviderCredentials:
    """Test single and multi-org key configuration."""

    def test_single_key(self):
        creds = load_provider_credentials("anthropic", {"ANTHROPIC_ADMIN_KEY": "sk-ant-admin-1"})
        assert creds == [ProviderCredential("anthropic", "default", "sk-ant-admin-1")]

    def test_multi_key_takes_precedence(self):
        env = {
            "OPENAI_ADMIN_KEY": "sk-single",
            "OPENAI_ADMIN_KEYS": json.dumps([
                {"key": "sk-a", "name": "Main Org"},
                {"key": "sk-b", "name": "Research"},
            ]),
        }
        creds = load_provider_credentials("openai", env)
        assert [c.org_name for c in creds] == ["Main Org", "Research"]
        assert [c.secret for c in creds] == ["sk-a", "sk-b"]

    def test_invalid_json_falls_back_to_single_key(self):
        env = {"CURSOR_ADMIN_KEYS": "not json", "CURSOR_ADMIN_KEY": "key_1"}
        creds = load_provider_credentials("cursor", env)
        assert [c.org_name for c in creds] == ["default"]

    def test_malformed_entries_fall_back(self):
        env = {"CURSOR_ADMIN_KEYS": json.dumps([{"key": "k"}])}
        assert load_provider_credentials("cursor", env) == []

    def test_nothing_configured(self):
        assert load_provider_credentials("anthropic", {}) == []

    def test_secret_hidden_from_repr(self):
        cred = ProviderCredential("anthropic", "default", "sk-secret")
        assert "sk-secret" not in repr(cred)


class TestRequireCredentials:
    def test_missing_credentials_raise_configuration_error(self):
        with pytest.raises(ConfigurationError, match="ANTHROPIC_ADMIN_KEY"):
            require_credentials("anthropic", [])

    def test_present_credentials_returned(self):
        creds = [ProviderCredential("openai", "default", "sk")]
        assert require_credentials("openai", creds) is creds
