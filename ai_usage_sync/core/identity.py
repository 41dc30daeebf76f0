"""
Identity resolution: provider actor ids to normalized identities (emails).

Mappings are persisted per (tool, external_id). They are refreshed with one
of two strategies picked by how many ids are still unmapped:

- incremental: look each unmapped id up individually, trying every
  configured credential until one owns it
- full: list every user and actor for each credential and cross-reference
  actors to users by creator id

Every mapping write goes through set_identity_mapping, which also
reattributes historical rows.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ai_usage_sync.config.loader import Settings
from ai_usage_sync.storage.repository import UsageRepository

from .errors import UsageSyncError

lib_logger = logging.getLogger("ai_usage_sync")


@dataclass
class MappingResult:
    """Outcome of one mapping refresh."""
    success: bool = True
    created: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    strategy: Optional[str] = None


class IdentityResolver:
    """In-memory view of the persisted mappings for one tool."""

    def __init__(self, repository: UsageRepository, tool: str):
        self.tool = tool
        self._mappings: Dict[str, str] = {
            mapping.external_id: mapping.identity
            for mapping in repository.get_identity_mappings(tool)
        }

    def resolve(self, external_id: Optional[str]) -> Optional[str]:
        """Return the identity for an external id, or None if unmapped."""
        if not external_id:
            return None
        return self._mappings.get(external_id)

    __call__ = resolve

    def __len__(self) -> int:
        return len(self._mappings)


def set_identity_mapping(repository: UsageRepository, tool: str, external_id: str, identity: str) -> int:
    """Create or replace a mapping and retroactively attribute existing rows.

    Args:
        repository: Target repository
        tool: Tool the external id belongs to
        external_id: Provider actor id
        identity: Identity (email) to attribute usage to

    Returns:
        Number of stored rows reattributed

    Raises:
        ValueError: If external_id or identity is empty
    """
    identity = (identity or "").strip()
    external_id = (external_id or "").strip()
    if not external_id:
        raise ValueError("external_id cannot be empty")
    if not identity:
        raise ValueError("identity cannot be empty")

    updated = repository.set_identity_mapping(tool, external_id, identity)
    lib_logger.info(f"Mapped {tool} {external_id} -> {identity} ({updated} rows reattributed)")
    return updated


def refresh_identities(provider, repository: UsageRepository, settings: Optional[Settings] = None) -> MappingResult:
    """Refresh mappings for a provider's still-unattributed external ids.

    Provider failures (including rate limiting) end the refresh and are
    reported in the result; mappings written before the failure are kept.

    Args:
        provider: ProviderClient to query
        repository: Repository holding mappings and usage rows
        settings: Settings supplying the incremental threshold

    Returns:
        MappingResult with created/skipped counts and errors
    """
    result = MappingResult()
    if not provider.supports_identity_lookup:
        return result

    unmapped = repository.get_unmapped_external_ids(provider.tool)
    if not unmapped:
        return result

    threshold = (settings or Settings()).identity.incremental_threshold
    result.strategy = "incremental" if len(unmapped) <= threshold else "full"
    lib_logger.info(
        f"Refreshing {provider.display_name} identities ({result.strategy}, {len(unmapped)} unmapped ids)"
    )

    try:
        if result.strategy == "incremental":
            _incremental_refresh(provider, repository, unmapped, result)
        else:
            _full_refresh(provider, repository, result)
    except UsageSyncError as e:
        lib_logger.warning(f"{provider.display_name} identity refresh aborted: {e}")
        result.success = False
        result.errors.append(str(e))

    return result


def _incremental_refresh(provider, repository: UsageRepository, unmapped: List[str], result: MappingResult) -> None:
    credentials = provider.require_credentials()
    for external_id in unmapped:
        identity = None
        for credential in credentials:
            identity = provider.lookup_identity(external_id, credential)
            if identity:
                break

        if identity:
            set_identity_mapping(repository, provider.tool, external_id, identity)
            result.created += 1
        else:
            lib_logger.debug(f"No credential could resolve {provider.tool} id {external_id}")
            result.skipped += 1


def _full_refresh(provider, repository: UsageRepository, result: MappingResult) -> None:
    existing = {m.external_id: m.identity for m in repository.get_identity_mappings(provider.tool)}

    for credential in provider.require_credentials():
        users = provider.list_users(credential)
        for actor in provider.list_actors(credential):
            identity = users.get(actor.owner_id)
            if not identity:
                continue
            if existing.get(actor.actor_id) == identity:
                result.skipped += 1
                continue
            set_identity_mapping(repository, provider.tool, actor.actor_id, identity)
            existing[actor.actor_id] = identity
            result.created += 1
