"""Provider adapters and registry."""

from typing import Dict, Optional, Type

from ai_usage_sync.config.loader import Settings

from .anthropic import AnthropicProvider
from .base import Granularity, PageOutcome, ProviderClient, UsagePage, UsageResult
from .cursor import CursorProvider
from .openai import OpenAIProvider

PROVIDERS: Dict[str, Type[ProviderClient]] = {
    AnthropicProvider.name: AnthropicProvider,
    OpenAIProvider.name: OpenAIProvider,
    CursorProvider.name: CursorProvider,
}


def get_provider(name: str, settings: Optional[Settings] = None, **kwargs) -> ProviderClient:
    """Build a provider client by name.

    Args:
        name: Provider name ("anthropic", "openai" or "cursor")
        settings: Settings supplying the configured request delay
        **kwargs: Passed through to the client (credentials, http_client, ...)

    Raises:
        ValueError: If the provider name is unknown
    """
    if name not in PROVIDERS:
        raise ValueError(f"Unknown provider '{name}'. Choose from: {', '.join(sorted(PROVIDERS))}")
    if settings is not None and "request_delay" not in kwargs:
        kwargs["request_delay"] = settings.get_provider_config(name).request_delay_seconds
    return PROVIDERS[name](**kwargs)


__all__ = [
    "PROVIDERS",
    "get_provider",
    "Granularity",
    "PageOutcome",
    "ProviderClient",
    "UsagePage",
    "UsageResult",
    "AnthropicProvider",
    "OpenAIProvider",
    "CursorProvider",
]
