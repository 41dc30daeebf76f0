"""
Exception hierarchy for usage ingestion.

Jobs convert these into structured results at their boundary; only
unexpected programming errors escape as-is.
"""

from typing import Optional


class UsageSyncError(Exception):
    """Base class for all ingestion errors."""


class ConfigurationError(UsageSyncError):
    """Raised when a provider is missing credentials or settings."""


class ProviderError(UsageSyncError):
    """Base class for failures talking to a provider API."""

    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider


class RateLimitedError(ProviderError):
    """Provider signalled rate limiting. Terminal for the current invocation."""


class ProviderAPIError(ProviderError):
    """Provider returned a non-success HTTP status."""

    def __init__(self, provider: str, status_code: int, body: str = ""):
        super().__init__(provider, f"{provider} API error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


class TransientFetchError(ProviderError):
    """Network-level failure (timeout, connection reset, bad payload)."""


class RowInsertError(UsageSyncError):
    """A single aggregated row could not be written."""

    def __init__(self, message: str, key: Optional[tuple] = None):
        super().__init__(message)
        self.key = key
