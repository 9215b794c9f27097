"""FastAPI dependency injection providers.

Shared objects are created once in the application lifespan and stored on
``app.state``; these providers hand them to route handlers. Tests replace
them through ``app.dependency_overrides``.
"""

from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from fastapi import Query, Request

from dealfeed.api.caching import FeedResponder
from dealfeed.services.cache_service import SnapshotStore, TTLCache
from dealfeed.services.deal_service import DEFAULT_LIMIT, DealQuery, DealService
from dealfeed.services.link_rewriter import LinkRewriter
from dealfeed.services.search_service import SearchGateway
from dealfeed.sources.factory import SourceRegistry


def get_registry(request: Request) -> SourceRegistry:
    return request.app.state.registry


def get_deal_service(request: Request) -> DealService:
    return request.app.state.deal_service


def get_search_gateway(request: Request) -> SearchGateway:
    return request.app.state.search_gateway


def get_feed_responder(request: Request) -> FeedResponder:
    return request.app.state.feed_responder


def get_link_rewriter(request: Request) -> LinkRewriter:
    return request.app.state.link_rewriter


def get_snapshots(request: Request) -> SnapshotStore:
    return request.app.state.snapshots


def get_sheets_cache(request: Request) -> TTLCache:
    return request.app.state.sheets_cache


def _parse_price(raw: Optional[str]) -> Optional[Decimal]:
    """Price bound from a query string; unparsable values mean no bound."""
    if raw is None or not raw.strip():
        return None
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def deal_query_dependency(default_limit: int = DEFAULT_LIMIT) -> Callable[..., DealQuery]:
    """Build a dependency parsing the common feed query parameters.

    Usage:
        @router.get("/coupons")
        async def coupons(query: DealQuery = Depends(deal_query_dependency(100))):
            ...
    """

    def dependency(
        q: str = Query("", description="Keyword (title, coupon code, tags)"),
        wh: str = Query("", description="Warehouse code; 'EU' means any non-CN warehouse"),
        store: str = Query("", description="Store name"),
        sort: Optional[str] = Query(None, description="price_asc|price_desc|store_asc|store_desc"),
        limit: int = Query(default_limit, description="Page size, clamped to 1-200"),
        cursor: Optional[str] = Query(None, description="Offset cursor from nextCursor"),
        min_price: Optional[str] = Query(None, alias="minPrice"),
        max_price: Optional[str] = Query(None, alias="maxPrice"),
    ) -> DealQuery:
        return DealQuery(
            keyword=q,
            warehouse=wh,
            store=store,
            sort=sort,
            limit=limit,
            cursor=cursor,
            min_price=_parse_price(min_price),
            max_price=_parse_price(max_price),
        )

    return dependency
