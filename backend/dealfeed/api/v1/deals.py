"""Deal feed endpoints (coupons and per-source feeds)."""

from fastapi import APIRouter, Depends, Query, Request, Response

from dealfeed.api.caching import FeedResponder
from dealfeed.config import settings
from dealfeed.dependencies import deal_query_dependency, get_deal_service, get_feed_responder
from dealfeed.services.deal_service import DealQuery, DealService
from dealfeed.sources.base import DealSource, FilterHints

router = APIRouter()


@router.get("/coupons")
async def coupons_feed(
    request: Request,
    src: str = Query("", pattern="^(|sheets|banggood)$", description="Restrict to one source"),
    query: DealQuery = Depends(deal_query_dependency(100)),
    deal_service: DealService = Depends(get_deal_service),
    responder: FeedResponder = Depends(get_feed_responder),
) -> Response:
    """Curated spreadsheet coupons merged with the Banggood coupon list.

    Spreadsheet rows take priority when both list the same offer.
    """
    return await responder.respond(
        request,
        feed="coupons",
        query_key=f"{query.cache_key()}&src={src}",
        max_age=settings.COUPONS_MAX_AGE_SECONDS,
        produce=lambda: deal_service.coupons_feed(query, src=src),
    )


@router.get("/sheets")
async def sheets_feed(
    request: Request,
    query: DealQuery = Depends(deal_query_dependency(100)),
    deal_service: DealService = Depends(get_deal_service),
    responder: FeedResponder = Depends(get_feed_responder),
) -> Response:
    """All live rows of the curated spreadsheet."""
    hints = FilterHints(limit=query.limit, offset=query.offset)
    return await responder.respond(
        request,
        feed="sheets",
        query_key=query.cache_key(),
        max_age=settings.FEED_MAX_AGE_SECONDS,
        produce=lambda: deal_service.source_feed(DealSource.SHEETS, query, hints=hints),
    )


@router.get("/banggood")
async def banggood_feed(
    request: Request,
    top: bool = Query(False, description="Hot catalog products instead of coupons"),
    catalog: bool = Query(False, description="Fall back to catalog search when no coupon matches q"),
    query: DealQuery = Depends(deal_query_dependency(100)),
    deal_service: DealService = Depends(get_deal_service),
    responder: FeedResponder = Depends(get_feed_responder),
) -> Response:
    """Banggood coupons, keyword search or hot products."""
    hints = FilterHints(
        keyword=query.keyword,
        top=top,
        catalog=catalog,
        limit=query.offset + query.limit,
    )
    return await responder.respond(
        request,
        feed="banggood",
        query_key=f"{query.cache_key()}&top={int(top)}&catalog={int(catalog)}",
        max_age=settings.FEED_MAX_AGE_SECONDS,
        produce=lambda: deal_service.source_feed(DealSource.BANGGOOD, query, hints=hints),
    )


@router.get("/aliexpress")
async def aliexpress_feed(
    request: Request,
    top: bool = Query(False, description="Hot products (implied when q is empty)"),
    pages: int = Query(4, ge=1, le=6, description="Upstream pages to scan (50 items each)"),
    query: DealQuery = Depends(deal_query_dependency(100)),
    deal_service: DealService = Depends(get_deal_service),
    responder: FeedResponder = Depends(get_feed_responder),
) -> Response:
    """AliExpress keyword search or hot products."""
    hints = FilterHints(
        keyword="" if top else query.keyword,
        top=top or not query.keyword,
        limit=query.limit,
        offset=query.offset,
        pages=pages,
    )
    return await responder.respond(
        request,
        feed="aliexpress",
        query_key=f"{query.cache_key()}&top={int(top)}&pages={pages}",
        max_age=settings.FEED_MAX_AGE_SECONDS,
        produce=lambda: deal_service.source_feed(
            DealSource.ALIEXPRESS, query, hints=hints, coupon_bonus=0.0
        ),
    )
