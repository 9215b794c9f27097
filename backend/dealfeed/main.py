"""Deal feed service -- FastAPI application entry point."""

from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dealfeed import __version__
from dealfeed.api.caching import FeedResponder
from dealfeed.api.v1.router import api_v1_router
from dealfeed.config import Settings, settings
from dealfeed.core.logging import configure_logging
from dealfeed.services.cache_service import SnapshotStore, TokenCache, TTLCache
from dealfeed.services.deal_service import DealQuery, DealService
from dealfeed.services.link_rewriter import LinkRewriter
from dealfeed.services.scheduler import SnapshotWarmer
from dealfeed.services.search_service import SEARCH_DEFAULT_LIMIT, SearchGateway
from dealfeed.sources.base import DealSource
from dealfeed.sources.factory import build_source_registry
from dealfeed.sources.utils.rate_limiter import DomainRateLimiter

configure_logging(settings.DEBUG)
logger = structlog.get_logger(__name__)


def init_app_state(app: FastAPI, config: Settings, http_client: httpx.AsyncClient) -> None:
    """Create the process-wide caches, adapters and services on app.state."""
    state = app.state
    state.http_client = http_client
    state.sheets_cache = TTLCache("sheets", ttl_seconds=config.SHEETS_CACHE_TTL_SECONDS)
    state.token_cache = TokenCache("banggood_token", margin_seconds=config.BANGGOOD_TOKEN_MARGIN_SECONDS)
    state.snapshots = SnapshotStore(max_per_feed=config.SNAPSHOT_MAX_PER_FEED)
    state.rate_limiter = DomainRateLimiter()

    state.registry = build_source_registry(
        config,
        http_client=http_client,
        rate_limiter=state.rate_limiter,
        sheets_cache=state.sheets_cache,
        token_cache=state.token_cache,
    )
    state.deal_service = DealService(state.registry, coupon_bonus=config.COUPON_SCORE_BONUS)
    state.search_gateway = SearchGateway(state.deal_service)
    state.feed_responder = FeedResponder(
        state.snapshots,
        stale_while_revalidate=config.STALE_WHILE_REVALIDATE_SECONDS,
        fallback_max_age=config.FALLBACK_MAX_AGE_SECONDS,
    )
    state.link_rewriter = LinkRewriter(
        affiliate_params=config.AFFILIATE_PARAMS,
        utm_source=config.UTM_SOURCE,
        utm_medium=config.UTM_MEDIUM,
        utm_campaign=config.UTM_CAMPAIGN,
    )


def build_warmer(app: FastAPI, config: Settings) -> SnapshotWarmer:
    """Warm the spreadsheet cache, then the default coupons and search snapshots."""
    state = app.state
    warmer = SnapshotWarmer(interval_minutes=config.WARMER_INTERVAL_MINUTES)

    async def warm_sheets():
        adapter = state.registry.get(DealSource.SHEETS)
        if adapter is None or not adapter.is_configured():
            logger.info("warm_sheets_skipped", reason="not configured")
            return
        # Raises on failure; the cached rows survive until a reload succeeds
        rows = await adapter.refresh()
        logger.info("sheets_warmed", rows=rows)

    coupons_query = DealQuery(limit=100)
    search_query = DealQuery(limit=SEARCH_DEFAULT_LIMIT)

    async def warm_coupons():
        await state.feed_responder.refresh(
            "coupons",
            f"{coupons_query.cache_key()}&src=",
            lambda: state.deal_service.coupons_feed(coupons_query),
        )

    async def warm_search():
        await state.feed_responder.refresh(
            "search",
            search_query.cache_key(),
            lambda: state.search_gateway.search(search_query),
        )

    warmer.add_task("sheets", warm_sheets)
    warmer.add_task("coupons", warm_coupons)
    warmer.add_task("search", warm_search)
    return warmer


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    logger.info("starting_server", environment=settings.ENVIRONMENT, debug=settings.DEBUG)

    http_client = httpx.AsyncClient(
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        follow_redirects=True,
        headers={"User-Agent": f"dealfeed/{__version__}"},
    )
    init_app_state(app, settings, http_client)

    # Start snapshot warmer (only in non-test environments)
    warmer = None
    if settings.WARMER_ENABLED and settings.ENVIRONMENT != "test":
        warmer = build_warmer(app, settings)
        warmer.start()
    else:
        logger.info("warmer_disabled", environment=settings.ENVIRONMENT)

    yield

    # Shutdown
    logger.info("shutting_down_server")
    if warmer:
        warmer.stop()
    await http_client.aclose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Deal Feed API",
        description="Aggregated coupon and deal feeds with cache-aware responses",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_methods=["GET"],
        allow_headers=["*"],
        expose_headers=["ETag", "X-Fallback", "X-Degraded-Sources"],
    )

    # Register API v1 router
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "Deal Feed API",
            "version": __version__,
            "docs": "/docs" if settings.DEBUG else None,
            "health": "/api/v1/health",
        }

    return app


app = create_app()
