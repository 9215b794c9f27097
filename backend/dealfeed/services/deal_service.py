"""Deal aggregation service.

Turns adapter outputs into one feed: merge in source-priority order,
deduplicate, filter, rank or sort, and paginate with an offset cursor.
The pure pipeline steps are module-level functions so they can be reused by
the search gateway and tested without any upstream.
"""

import asyncio
import locale
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from dealfeed.services.deal_scoring import DealScorer
from dealfeed.sources.base import AdapterResult, Deal, DealSource, FilterHints
from dealfeed.sources.utils.normalizer import strip_query, to_iso

if TYPE_CHECKING:
    from dealfeed.sources.factory import SourceRegistry

logger = structlog.get_logger(__name__)

SORT_KEYS = ("price_asc", "price_desc", "store_asc", "store_desc")

# Regional shorthand: any known warehouse outside China
EU_WAREHOUSE = "EU"
CN_WAREHOUSE = "CN"

MAX_LIMIT = 200
DEFAULT_LIMIT = 100


@dataclass
class DealQuery:
    """Client-side filters, ordering and paging window for a feed."""

    keyword: str = ""
    warehouse: str = ""
    store: str = ""
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    sort: Optional[str] = None
    limit: int = DEFAULT_LIMIT
    cursor: Optional[str] = None

    def __post_init__(self):
        self.keyword = (self.keyword or "").strip()
        self.warehouse = (self.warehouse or "").strip()
        self.store = (self.store or "").strip()
        if self.sort not in SORT_KEYS:
            self.sort = None
        self.limit = max(1, min(MAX_LIMIT, int(self.limit)))

    @property
    def offset(self) -> int:
        return parse_cursor(self.cursor)

    def cache_key(self) -> str:
        """Canonical string identifying this query (for snapshot lookup)."""
        parts = [
            ("q", self.keyword.lower()),
            ("wh", self.warehouse.upper()),
            ("store", self.store.lower()),
            ("minPrice", "" if self.min_price is None else str(self.min_price)),
            ("maxPrice", "" if self.max_price is None else str(self.max_price)),
            ("sort", self.sort or ""),
            ("limit", str(self.limit)),
            ("cursor", str(self.offset)),
        ]
        return "&".join(f"{k}={v}" for k, v in parts if v)


@dataclass
class Page:
    """One page of a ranked result set."""

    items: List[Deal]
    total: int
    offset: int
    next_cursor: Optional[str] = None


@dataclass
class FeedResult:
    """Everything a feed response is built from."""

    page: Page
    meta: Dict[str, List[str]]
    updated_at: str
    degraded: Dict[str, str] = field(default_factory=dict)

    @property
    def degraded_sources(self) -> List[str]:
        return sorted(self.degraded)


# ---------------------------------------------------------------------------
# Pipeline steps
# ---------------------------------------------------------------------------


def dedupe_key(deal: Deal) -> Tuple[str, str]:
    return strip_query(deal.url), deal.coupon_code or ""


def merge(lists: Iterable[Sequence[Deal]]) -> List[Deal]:
    """Concatenate adapter outputs and drop duplicates; first occurrence wins.

    Lists must be passed in source-priority order (curated spreadsheet rows
    before live API data).
    """
    seen = set()
    merged: List[Deal] = []
    for deals in lists:
        for deal in deals:
            key = dedupe_key(deal)
            if key in seen:
                continue
            seen.add(key)
            merged.append(deal)
    return merged


def matches_keyword(deal: Deal, keyword: str) -> bool:
    """Case-insensitive substring match on title, coupon code or any tag."""
    needle = keyword.strip().lower()
    if not needle:
        return True
    haystacks = [deal.title, deal.coupon_code or "", *deal.tags]
    return any(needle in h.lower() for h in haystacks)


def matches_warehouse(deal: Deal, warehouse: str) -> bool:
    wanted = warehouse.strip().upper()
    if not wanted:
        return True
    actual = (deal.warehouse or "").strip().upper()
    if wanted == EU_WAREHOUSE:
        return bool(actual) and actual != CN_WAREHOUSE
    return actual == wanted


def matches_store(deal: Deal, store: str) -> bool:
    wanted = store.strip().casefold()
    if not wanted:
        return True
    return deal.resolved_store.casefold() == wanted


def matches_price(deal: Deal, min_price: Optional[Decimal], max_price: Optional[Decimal]) -> bool:
    """Unknown price never satisfies a minimum and always satisfies a maximum."""
    if min_price is not None and (deal.price is None or deal.price < min_price):
        return False
    if max_price is not None and deal.price is not None and deal.price > max_price:
        return False
    return True


def filter_deals(deals: Iterable[Deal], query: DealQuery) -> List[Deal]:
    return [
        d for d in deals
        if matches_keyword(d, query.keyword)
        and matches_warehouse(d, query.warehouse)
        and matches_store(d, query.store)
        and matches_price(d, query.min_price, query.max_price)
    ]


def _store_sort_key(deal: Deal) -> str:
    return locale.strxfrm(deal.resolved_store.casefold())


def sort_deals(deals: Sequence[Deal], sort: Optional[str], scorer: DealScorer) -> List[Deal]:
    """Order deals by an explicit sort key, or by score when none is given.

    Missing prices sort last ascending and first descending.
    """
    if sort == "price_asc":
        return sorted(deals, key=lambda d: (d.price is None, d.price or 0))
    if sort == "price_desc":
        return sorted(deals, key=lambda d: (d.price is None, d.price or 0), reverse=True)
    if sort == "store_asc":
        return sorted(deals, key=_store_sort_key)
    if sort == "store_desc":
        return sorted(deals, key=_store_sort_key, reverse=True)

    # sorted() is stable, so equal scores keep merge order
    return sorted(deals, key=scorer.score, reverse=True)


def parse_cursor(cursor: Optional[str]) -> int:
    """Offset encoded in a cursor; anything unparsable restarts at 0."""
    try:
        return max(0, int(str(cursor).strip()))
    except (TypeError, ValueError):
        return 0


def paginate(deals: Sequence[Deal], limit: int, cursor: Optional[str] = None) -> Page:
    offset = parse_cursor(cursor)
    end = offset + limit
    return Page(
        items=list(deals[offset:end]),
        total=len(deals),
        offset=offset,
        next_cursor=str(end) if end < len(deals) else None,
    )


def collect_meta(deals: Iterable[Deal]) -> Dict[str, List[str]]:
    """Distinct warehouses and store names, for filter pickers."""
    warehouses = set()
    stores = set()
    for deal in deals:
        if deal.warehouse:
            warehouses.add(deal.warehouse)
        store = deal.resolved_store
        if store:
            stores.add(store)
    return {
        "warehouses": sorted(warehouses, key=lambda s: locale.strxfrm(s.casefold())),
        "stores": sorted(stores, key=lambda s: locale.strxfrm(s.casefold())),
    }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class DealService:
    """Fans out to source adapters and builds ranked, paginated feeds."""

    def __init__(self, registry: "SourceRegistry", coupon_bonus: float = 0.0):
        """Initialize deal service.

        Args:
            registry: Configured source adapters
            coupon_bonus: Score bonus applied by coupon-centric feeds
        """
        self.registry = registry
        self.coupon_bonus = coupon_bonus
        self.logger = logger.bind(service="deal_service")

    async def fan_out(
        self, plan: Sequence[Tuple[DealSource, FilterHints]]
    ) -> List[AdapterResult]:
        """Run adapters concurrently and wait for all of them.

        Results come back in plan order, which is the merge priority.
        """
        calls = []
        for source, hints in plan:
            adapter = self.registry.get(source)
            if adapter is not None:
                calls.append(adapter.fetch(hints))
        return list(await asyncio.gather(*calls))

    def build_feed(
        self,
        results: Sequence[AdapterResult],
        query: DealQuery,
        coupon_bonus: Optional[float] = None,
    ) -> FeedResult:
        """Merge, filter, rank and paginate adapter results."""
        bonus = self.coupon_bonus if coupon_bonus is None else coupon_bonus
        merged = merge(
            r.deals if r.keyword_applied else [d for d in r.deals if matches_keyword(d, query.keyword)]
            for r in results
        )
        filtered = filter_deals(merged, replace(query, keyword=""))
        ranked = sort_deals(filtered, query.sort, DealScorer(coupon_bonus=bonus))
        page = paginate(ranked, query.limit, query.cursor)

        degraded = {r.source.value: r.degraded for r in results if r.degraded}
        self.logger.info(
            "feed_built",
            merged=len(merged),
            matched=len(filtered),
            returned=len(page.items),
            offset=page.offset,
            degraded=sorted(degraded),
        )
        return FeedResult(
            page=page,
            meta=collect_meta(ranked),
            updated_at=to_iso(datetime.now(timezone.utc)),
            degraded=degraded,
        )

    async def coupons_feed(self, query: DealQuery, src: str = "") -> FeedResult:
        """Curated spreadsheet coupons plus the Banggood coupon list.

        Args:
            query: Filters and paging
            src: Optional source restriction ('sheets' or 'banggood')
        """
        wanted = src.strip().lower()
        plan = [
            (source, FilterHints(limit=query.limit, offset=query.offset))
            for source in (DealSource.SHEETS, DealSource.BANGGOOD)
            if not wanted or wanted == source.value
        ]
        results = await self.fan_out(plan)
        return self.build_feed(results, query)

    async def source_feed(
        self,
        source: DealSource,
        query: DealQuery,
        hints: Optional[FilterHints] = None,
        coupon_bonus: Optional[float] = None,
    ) -> FeedResult:
        """Feed backed by a single adapter."""
        hints = hints or FilterHints(keyword=query.keyword, limit=query.limit, offset=query.offset)
        results = await self.fan_out([(source, hints)])
        return self.build_feed(results, query, coupon_bonus=coupon_bonus)
