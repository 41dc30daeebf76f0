"""
Provider client base class.

Owns everything the provider adapters share: credentials, the HTTP client,
sequential pagination with an optional inter-request delay, and response
classification. Adapters only describe their endpoints and payload shapes.

Required from adapters:
    - name, tool, granularity, base_url class attributes
    - auth_headers(credential)
    - fetch_page(credential, start, end, page_token) -> httpx.Response
    - parse_page(payload, page_token) -> UsagePage
    - bucket_to_date(bucket) -> date
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

import httpx

from ai_usage_sync.config.credentials import (
    ProviderCredential,
    load_provider_credentials,
    require_credentials,
)
from ai_usage_sync.core.errors import (
    ProviderAPIError,
    RateLimitedError,
    TransientFetchError,
)
from ai_usage_sync.core.token_counter import TokenUsage

lib_logger = logging.getLogger("ai_usage_sync")

DEFAULT_TIMEOUT = 30.0


class Granularity(Enum):
    """Time bucket size a provider reports and tracks its forward cursor in."""
    DAY = "day"
    HOUR = "hour"

    @property
    def step(self) -> timedelta:
        return timedelta(days=1) if self is Granularity.DAY else timedelta(hours=1)

    @property
    def default_initial_lookback(self) -> timedelta:
        return timedelta(days=7) if self is Granularity.DAY else timedelta(days=1)

    def floor(self, moment: datetime) -> datetime:
        """Round a datetime down to this granularity's boundary in UTC."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        moment = moment.astimezone(timezone.utc)
        if self is Granularity.DAY:
            return moment.replace(hour=0, minute=0, second=0, microsecond=0)
        return moment.replace(minute=0, second=0, microsecond=0)

    def current_period_end(self, now: datetime) -> datetime:
        """End of the last complete period at ``now`` (exclusive boundary)."""
        return self.floor(now)


class PageOutcome(Enum):
    """Classification of one provider response."""
    SUCCESS_WITH_DATA = "success_with_data"  # more pages follow
    SUCCESS_EXHAUSTED = "success_exhausted"  # last page
    RATE_LIMITED = "rate_limited"
    HARD_ERROR = "hard_error"


@dataclass(frozen=True)
class UsageResult:
    """One raw per-bucket, per-actor usage result from a provider.

    ``external_id`` needs resolving to an identity; ``identity`` is set when
    the provider already reports a normalized identity (e.g. an email).
    """
    usage_date: date
    model: str
    tokens: TokenUsage
    cost: Optional[float] = None
    external_id: Optional[str] = None
    identity: Optional[str] = None
    provider_record_id: Optional[str] = None


@dataclass
class UsagePage:
    """Parsed results of one page plus the token for the next one."""
    results: List[UsageResult] = field(default_factory=list)
    next_page: Optional[Any] = None


@dataclass(frozen=True)
class DirectoryActor:
    """An actor (API key or user) and the id of the user who owns it."""
    actor_id: str
    owner_id: str


class ProviderClient(ABC):
    """Paginated, authenticated access to one provider's admin API.

    Has no side effects on the store or sync state. Rate limiting is never
    retried here; it aborts the call and the caller decides when to retry.
    """

    name: str = ""
    display_name: str = ""
    tool: str = ""
    granularity: Granularity = Granularity.DAY
    base_url: str = ""
    default_request_delay: float = 0.0
    supports_identity_lookup: bool = True

    def __init__(
        self,
        credentials: Optional[List[ProviderCredential]] = None,
        http_client: Optional[httpx.Client] = None,
        request_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """Initialize the client.

        Args:
            credentials: Admin credentials; read from the environment when None
            http_client: Shared httpx client, created on demand when None
            request_delay: Seconds between page requests (provider default when None)
            sleep: Sleep function, replaceable in tests
            environ: Environment mapping for credential lookup
        """
        if credentials is None:
            credentials = load_provider_credentials(self.name, environ)
        self.credentials = list(credentials)
        self._http = http_client
        self._owns_http = http_client is None
        self.request_delay = self.default_request_delay if request_delay is None else request_delay
        self._sleep = sleep

    # =========================================================================
    # HTTP PLUMBING
    # =========================================================================

    @property
    def http(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(timeout=DEFAULT_TIMEOUT)
        return self._http

    def close(self) -> None:
        if self._http is not None and self._owns_http:
            self._http.close()
            self._http = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def require_credentials(self) -> List[ProviderCredential]:
        return require_credentials(self.name, self.credentials)

    def _send(self, method: str, path: str, credential: ProviderCredential, **kwargs: Any) -> httpx.Response:
        headers = dict(self.auth_headers(credential))
        headers.setdefault("Accept", "application/json")
        try:
            return self.http.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise TransientFetchError(self.name, f"Fetch error: {type(e).__name__}: {e}") from e

    def is_rate_limited(self, response: httpx.Response) -> bool:
        return response.status_code == 429

    def classify(self, response: httpx.Response, page: Optional[UsagePage] = None) -> PageOutcome:
        """Classify a response into exactly one PageOutcome."""
        if self.is_rate_limited(response):
            return PageOutcome.RATE_LIMITED
        if response.status_code >= 400:
            return PageOutcome.HARD_ERROR
        if page is not None and page.next_page is not None:
            return PageOutcome.SUCCESS_WITH_DATA
        return PageOutcome.SUCCESS_EXHAUSTED

    def _raise_for_outcome(self, response: httpx.Response) -> None:
        outcome = self.classify(response)
        if outcome is PageOutcome.RATE_LIMITED:
            raise RateLimitedError(self.name, f"{self.display_name} API rate limited: {response.text}")
        if outcome is PageOutcome.HARD_ERROR:
            raise ProviderAPIError(self.name, response.status_code, response.text)

    def _decode(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise TransientFetchError(self.name, f"Invalid JSON from {self.display_name}: {e}") from e
        if not isinstance(payload, dict):
            raise TransientFetchError(self.name, f"Unexpected payload from {self.display_name}")
        return payload

    def _get_json(
        self,
        path: str,
        credential: ProviderCredential,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        response = self._send("GET", path, credential, params=params)
        self._raise_for_outcome(response)
        return self._decode(response)

    # =========================================================================
    # USAGE REPORTS
    # =========================================================================

    def iter_usage(
        self,
        credential: ProviderCredential,
        start: datetime,
        end: datetime,
    ) -> Iterator[UsageResult]:
        """Yield usage results for [start, end) page by page.

        Raises:
            RateLimitedError: On HTTP 429, immediately and without retry
            ProviderAPIError: On any other error status
            TransientFetchError: On transport or payload failures
        """
        page_token: Optional[Any] = None
        pages = 0
        while True:
            if pages and self.request_delay:
                self._sleep(self.request_delay)

            response = self.fetch_page(credential, start, end, page_token)
            self._raise_for_outcome(response)
            page = self.parse_page(self._decode(response), page_token)
            pages += 1
            lib_logger.debug(
                f"{self.display_name} page {pages} ({credential.org_name}): {len(page.results)} results"
            )

            yield from page.results

            if self.classify(response, page) is PageOutcome.SUCCESS_EXHAUSTED:
                return
            page_token = page.next_page

    def fetch_usage(
        self,
        start: datetime,
        end: datetime,
        credentials: Optional[List[ProviderCredential]] = None,
    ) -> List[UsageResult]:
        """Fetch all usage for [start, end) across every configured credential."""
        results: List[UsageResult] = []
        for credential in credentials or self.require_credentials():
            results.extend(self.iter_usage(credential, start, end))
        return results

    @abstractmethod
    def auth_headers(self, credential: ProviderCredential) -> Dict[str, str]:
        ...

    @abstractmethod
    def fetch_page(
        self,
        credential: ProviderCredential,
        start: datetime,
        end: datetime,
        page_token: Optional[Any],
    ) -> httpx.Response:
        ...

    @abstractmethod
    def parse_page(self, payload: Dict[str, Any], page_token: Optional[Any]) -> UsagePage:
        ...

    @abstractmethod
    def bucket_to_date(self, bucket: Dict[str, Any]) -> date:
        ...

    # =========================================================================
    # DIRECTORY (IDENTITY RESOLUTION)
    # =========================================================================

    def list_users(self, credential: ProviderCredential) -> Dict[str, str]:
        """Map every org user id to its email."""
        raise NotImplementedError(f"{self.display_name} has no user directory")

    def list_actors(self, credential: ProviderCredential) -> List[DirectoryActor]:
        """List actors that appear in usage reports with their owning user id."""
        raise NotImplementedError(f"{self.display_name} has no actor directory")

    def lookup_identity(self, external_id: str, credential: ProviderCredential) -> Optional[str]:
        """Resolve one actor id with one credential; None when not found there."""
        raise NotImplementedError(f"{self.display_name} has no identity lookup")


def to_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def format_rfc3339(moment: datetime) -> str:
    return to_utc(moment).strftime("%Y-%m-%dT%H:%M:%SZ")


def int_field(item: Dict[str, Any], name: str) -> int:
    """Read a token count, treating missing or null as zero."""
    return int(item.get(name) or 0)
