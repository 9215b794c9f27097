"""Base source adapter interface.

All upstream sources inherit from BaseAdapter and implement fetch_deals().
Callers never call fetch_deals() directly: BaseAdapter.fetch() wraps it and
turns any failure into a degraded, empty AdapterResult.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

import httpx
import structlog

from dealfeed.core.exceptions import CredentialsMissingError
from dealfeed.sources.utils.normalizer import parse_iso, store_from_url
from dealfeed.sources.utils.rate_limiter import DomainRateLimiter


class DealSource(str, Enum):
    """Which adapter produced a deal."""

    SHEETS = "sheets"
    BANGGOOD = "banggood"
    ALIEXPRESS = "aliexpress"


@dataclass
class Deal:
    """Canonical deal record returned by all adapters."""

    id: str
    source: DealSource
    title: str
    url: str
    store: str = ""
    short_url: Optional[str] = None
    image: Optional[str] = None
    price: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    currency: str = "USD"
    coupon_code: Optional[str] = None
    warehouse: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    updated_at: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    residual: Optional[int] = None  # Remaining coupon uses, when reported

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.id:
            raise ValueError("id is required")
        if not self.title or not str(self.title).strip():
            raise ValueError("title is required")
        if not self.url:
            raise ValueError("url is required")
        self.currency = (self.currency or "USD").upper()

    @property
    def resolved_store(self) -> str:
        """Store name, inferred from the URL domain when blank."""
        return self.store or store_from_url(self.url)

    @property
    def outbound_url(self) -> str:
        """Link used for redirection: the affiliate short link when present."""
        return self.short_url or self.url

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        ends = parse_iso(self.ends_at)
        if ends is None:
            return False
        return ends < (now or datetime.now(timezone.utc))


@dataclass
class FilterHints:
    """Query hints an adapter may use to narrow its upstream request."""

    keyword: str = ""
    top: bool = False
    catalog: bool = False
    limit: int = 100
    offset: int = 0
    pages: int = 4


@dataclass
class AdapterResult:
    """Outcome of one adapter invocation.

    ``degraded`` carries the failure reason when the adapter could not
    produce data; ``deals`` is then empty.
    """

    source: DealSource
    deals: List[Deal] = field(default_factory=list)
    degraded: Optional[str] = None
    # The upstream already matched the keyword (its own relevance rules)
    keyword_applied: bool = False

    @property
    def ok(self) -> bool:
        return self.degraded is None


class BaseAdapter(ABC):
    """Abstract base class for all deal sources."""

    source: DealSource
    store_name: str = ""
    # True when the upstream applies the keyword itself
    searches_upstream: bool = False

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
    ):
        """Initialize the adapter with dependency injection points."""
        self.http_client = http_client
        self.rate_limiter = rate_limiter
        self.logger = structlog.get_logger(adapter=self.source.value)

    def is_configured(self) -> bool:
        """Whether the credentials this adapter needs are present."""
        return True

    async def fetch(self, hints: Optional[FilterHints] = None) -> AdapterResult:
        """Fetch deals, never raising.

        Any failure (missing credentials, auth, timeout, malformed payload)
        is logged and reported as a degraded result with no deals. Expired
        deals are dropped here so no adapter can emit one.

        Args:
            hints: Optional query hints for the upstream request

        Returns:
            AdapterResult with the fetched deals or the failure reason
        """
        hints = hints or FilterHints()
        try:
            deals = await self.fetch_deals(hints)
        except CredentialsMissingError as e:
            self.logger.warning("adapter_not_configured", error=str(e))
            return AdapterResult(source=self.source, degraded="credentials_missing")
        except Exception as e:
            self.logger.error(
                "adapter_fetch_failed",
                error=str(e),
                error_type=type(e).__name__,
                keyword=hints.keyword,
            )
            return AdapterResult(source=self.source, degraded=str(e) or type(e).__name__)

        now = datetime.now(timezone.utc)
        live = [d for d in deals if not d.is_expired(now)]
        if len(live) != len(deals):
            self.logger.info("expired_deals_dropped", count=len(deals) - len(live))

        self.logger.info("adapter_fetch_complete", count=len(live), keyword=hints.keyword)
        return AdapterResult(
            source=self.source,
            deals=live,
            keyword_applied=self.searches_upstream and bool(hints.keyword.strip()),
        )

    @abstractmethod
    async def fetch_deals(self, hints: FilterHints) -> List[Deal]:
        """Fetch current deals from this source.

        Args:
            hints: Query hints (keyword, top/catalog toggles, paging window)

        Returns:
            List of Deal objects

        Raises:
            AdapterError: If the upstream cannot be read
        """

    def map_items(
        self,
        items: Iterable[Dict[str, Any]],
        mapper: Callable[[Dict[str, Any]], Optional[Deal]],
    ) -> List[Deal]:
        """Map raw upstream items, skipping (and logging) malformed ones."""
        deals: List[Deal] = []
        for item in items:
            try:
                deal = mapper(item)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                self.logger.warning("item_skipped", error=str(e))
                continue
            if deal is not None:
                deals.append(deal)
        return deals

    async def health_check(self) -> bool:
        """Check if this adapter can reach its data source."""
        result = await self.fetch(FilterHints(limit=1))
        return result.ok


class BaseAPIAdapter(BaseAdapter):
    """Base class for JSON API sources.

    Provides rate-limited GET requests through the injected httpx client.
    """

    timeout: float = 12.0

    async def _get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """GET a JSON document.

        Raises:
            httpx.HTTPStatusError: On non-2xx responses
            httpx.TimeoutException / httpx.NetworkError: On transport failure
            ValueError: If the body is not JSON
        """
        if self.rate_limiter:
            await self.rate_limiter.acquire(urlsplit(url).netloc)

        request_timeout = timeout if timeout is not None else self.timeout
        if self.http_client is not None:
            response = await self.http_client.get(
                url, params=params, headers=headers, timeout=request_timeout
            )
        else:
            async with httpx.AsyncClient(timeout=request_timeout) as client:
                response = await client.get(url, params=params, headers=headers)

        response.raise_for_status()
        return response.json()
