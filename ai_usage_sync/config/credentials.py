"""
Provider credential loading for multi-organization setups.

Each provider accepts either a single admin key or a JSON array of named
keys, one per organization:

    ANTHROPIC_ADMIN_KEY=sk-ant-admin-...
    ANTHROPIC_ADMIN_KEYS='[{"key": "sk-ant-admin-...", "name": "Main Org"}]'

The plural form wins when it parses to a non-empty list.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from ai_usage_sync.core.errors import ConfigurationError

lib_logger = logging.getLogger("ai_usage_sync")


@dataclass(frozen=True)
class ProviderCredential:
    """One admin credential for one organization of a provider."""
    provider: str
    org_name: str
    secret: str = field(repr=False)

    def __post_init__(self):
        if not self.secret:
            raise ValueError("secret cannot be empty")
        if not self.org_name:
            raise ValueError("org_name cannot be empty")


def _env_prefix(provider: str) -> str:
    return provider.upper().replace("-", "_")


def _parse_keys_json(provider: str, value: str) -> Optional[List[ProviderCredential]]:
    """Parse a JSON array of {"key", "name"} objects, None if malformed."""
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, list):
        return None
    if not all(
        isinstance(entry, dict)
        and isinstance(entry.get("key"), str)
        and isinstance(entry.get("name"), str)
        for entry in parsed
    ):
        return None
    try:
        return [ProviderCredential(provider, entry["name"], entry["key"]) for entry in parsed]
    except ValueError:
        return None


def load_provider_credentials(
    provider: str,
    environ: Optional[Mapping[str, str]] = None,
) -> List[ProviderCredential]:
    """Read the admin credentials configured for a provider.

    Args:
        provider: Provider name (e.g. "anthropic")
        environ: Environment mapping, defaults to os.environ

    Returns:
        Credentials in configuration order; empty if none are configured
    """
    env = os.environ if environ is None else environ
    prefix = _env_prefix(provider)

    multi_key = env.get(f"{prefix}_ADMIN_KEYS")
    if multi_key:
        parsed = _parse_keys_json(provider, multi_key)
        if parsed:
            return parsed
        lib_logger.warning(f"{prefix}_ADMIN_KEYS is not a valid key list, falling back to {prefix}_ADMIN_KEY")

    single_key = env.get(f"{prefix}_ADMIN_KEY")
    if single_key:
        return [ProviderCredential(provider, "default", single_key)]

    return []


def require_credentials(
    provider: str,
    credentials: List[ProviderCredential],
) -> List[ProviderCredential]:
    """Return credentials or raise ConfigurationError when there are none."""
    if not credentials:
        prefix = _env_prefix(provider)
        raise ConfigurationError(
            f"No {provider} admin keys configured (set {prefix}_ADMIN_KEY or {prefix}_ADMIN_KEYS)"
        )
    return credentials
