"""Cross-source search endpoint."""

from fastapi import APIRouter, Depends, Request, Response

from dealfeed.api.caching import FeedResponder
from dealfeed.config import settings
from dealfeed.dependencies import deal_query_dependency, get_feed_responder, get_search_gateway
from dealfeed.services.deal_service import DealQuery
from dealfeed.services.search_service import SEARCH_DEFAULT_LIMIT, SearchGateway

router = APIRouter()


@router.get("")
async def search(
    request: Request,
    query: DealQuery = Depends(deal_query_dependency(SEARCH_DEFAULT_LIMIT)),
    gateway: SearchGateway = Depends(get_search_gateway),
    responder: FeedResponder = Depends(get_feed_responder),
) -> Response:
    """Search every source at once.

    Without ``q`` the merchants contribute their hot products. The ``meta``
    block lists the warehouses and stores of the whole result.
    """
    return await responder.respond(
        request,
        feed="search",
        query_key=query.cache_key(),
        max_age=settings.FEED_MAX_AGE_SECONDS,
        produce=lambda: gateway.search(query),
    )
