"""Cross-source search.

One keyword is sent to every relevant source in parallel with mode-appropriate
hints, then merged and ranked with the same pipeline as the per-source feeds.
"""

import re
from typing import List, Tuple

import structlog

from dealfeed.services.deal_service import DealQuery, DealService, FeedResult
from dealfeed.sources.base import DealSource, FilterHints

logger = structlog.get_logger(__name__)

# Store filters answered by the curated spreadsheet (it aggregates several shops)
SHEET_STORES_RE = re.compile(r"^(geekbuying|banggood|sheets|all)$", re.IGNORECASE)
ALIEXPRESS_STORE_RE = re.compile(r"^aliexpress$", re.IGNORECASE)
BANGGOOD_STORE_RE = re.compile(r"^banggood$", re.IGNORECASE)

ALIEXPRESS_MAX_LIMIT = 100
SEARCH_DEFAULT_LIMIT = 120


class SearchGateway:
    """Fans a query out to the sources a store filter can match."""

    def __init__(self, deal_service: DealService):
        self.deal_service = deal_service
        self.logger = logger.bind(service="search_gateway")

    def plan(self, query: DealQuery) -> List[Tuple[DealSource, FilterHints]]:
        """Choose sources and per-source hints for a query.

        Without a keyword the merchants are asked for their top/hot lists;
        with one, Banggood also falls back to catalog results.
        """
        store = query.store
        keyword = query.keyword
        # Upstream must return enough rows to cover the requested page
        window = query.offset + query.limit
        plan: List[Tuple[DealSource, FilterHints]] = []

        if not store or SHEET_STORES_RE.match(store):
            plan.append((DealSource.SHEETS, FilterHints(keyword=keyword, limit=window)))

        if not store or BANGGOOD_STORE_RE.match(store):
            if keyword:
                hints = FilterHints(keyword=keyword, catalog=True, limit=window)
            else:
                hints = FilterHints(top=True, limit=window)
            plan.append((DealSource.BANGGOOD, hints))

        if not store or ALIEXPRESS_STORE_RE.match(store):
            plan.append(
                (
                    DealSource.ALIEXPRESS,
                    FilterHints(
                        keyword=keyword,
                        top=not keyword,
                        limit=min(window, ALIEXPRESS_MAX_LIMIT),
                    ),
                )
            )

        return plan

    async def search(self, query: DealQuery) -> FeedResult:
        plan = self.plan(query)
        self.logger.info(
            "search_fan_out",
            keyword=query.keyword,
            store=query.store,
            sources=[source.value for source, _ in plan],
        )
        results = await self.deal_service.fan_out(plan)
        return self.deal_service.build_feed(results, query, coupon_bonus=0.0)
