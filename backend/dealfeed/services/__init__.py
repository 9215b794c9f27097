"""Services module for business logic.

Services aggregate and rank deals, rewrite outbound links and keep the
shared in-process caches and the snapshot warmer.
"""

from dealfeed.services.cache_service import SnapshotStore, TokenCache, TTLCache
from dealfeed.services.deal_scoring import DealScore, DealScorer
from dealfeed.services.deal_service import DealQuery, DealService, FeedResult, Page
from dealfeed.services.link_rewriter import LinkRewriter
from dealfeed.services.search_service import SearchGateway

__all__ = [
    "DealQuery",
    "DealScore",
    "DealScorer",
    "DealService",
    "FeedResult",
    "LinkRewriter",
    "Page",
    "SearchGateway",
    "SnapshotStore",
    "TokenCache",
    "TTLCache",
]
