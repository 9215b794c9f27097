"""Factory for creating and holding the configured source adapters."""

from typing import Dict, List, Optional

import httpx
import structlog

from dealfeed.config import Settings
from dealfeed.services.cache_service import TokenCache, TTLCache
from dealfeed.sources.adapters import AliExpressAdapter, BanggoodAdapter, SpreadsheetAdapter
from dealfeed.sources.base import BaseAdapter, DealSource
from dealfeed.sources.utils.rate_limiter import DomainRateLimiter


logger = structlog.get_logger(__name__)


class SourceRegistry:
    """Holds one adapter instance per source.

    Adapters are created once per process with the shared HTTP client, rate
    limiter and caches injected, then reused by every request.
    """

    def __init__(self):
        self._adapters: Dict[DealSource, BaseAdapter] = {}

    def register(self, adapter: BaseAdapter) -> None:
        """Register an adapter instance under its source tag.

        Args:
            adapter: Configured adapter (must inherit from BaseAdapter)
        """
        if not isinstance(adapter, BaseAdapter):
            raise ValueError(f"Adapter must inherit from BaseAdapter: {adapter!r}")

        self._adapters[adapter.source] = adapter
        logger.info(
            "adapter_registered",
            source=adapter.source.value,
            configured=adapter.is_configured(),
        )

    def get(self, source: DealSource) -> Optional[BaseAdapter]:
        adapter = self._adapters.get(source)
        if adapter is None:
            logger.warning("adapter_not_found", source=source.value)
        return adapter

    def has(self, source: DealSource) -> bool:
        return source in self._adapters

    def sources(self) -> List[DealSource]:
        """Registered sources in priority order (curated data first)."""
        return [s for s in DealSource if s in self._adapters]

    def adapters(self) -> List[BaseAdapter]:
        return [self._adapters[s] for s in self.sources()]


def build_source_registry(
    settings: Settings,
    http_client: httpx.AsyncClient,
    rate_limiter: DomainRateLimiter,
    sheets_cache: TTLCache,
    token_cache: TokenCache,
) -> SourceRegistry:
    """Create all adapters from settings and the process-wide shared objects.

    Returns:
        SourceRegistry with sheets, banggood and aliexpress adapters
    """
    registry = SourceRegistry()
    registry.register(
        SpreadsheetAdapter(
            spreadsheet_id=settings.SPREADSHEET_ID,
            sheet_names=settings.get_sheet_names(),
            cache=sheets_cache,
            credentials_json=settings.GOOGLE_APPLICATION_CREDENTIALS_JSON,
            api_key=settings.GOOGLE_SHEETS_API_KEY,
            http_client=http_client,
            rate_limiter=rate_limiter,
        )
    )
    registry.register(
        BanggoodAdapter(
            api_key=settings.BANGGOOD_API_KEY,
            api_secret=settings.BANGGOOD_API_SECRET,
            token_cache=token_cache,
            max_pages=settings.BANGGOOD_MAX_PAGES,
            http_client=http_client,
            rate_limiter=rate_limiter,
        )
    )
    registry.register(
        AliExpressAdapter(
            app_key=settings.ALIEXPRESS_APP_KEY,
            app_secret=settings.ALIEXPRESS_APP_SECRET,
            tracking_id=settings.ALIEXPRESS_TRACKING_ID,
            api_urls=settings.get_aliexpress_urls(),
            target_currency=settings.ALIEXPRESS_TARGET_CURRENCY,
            target_language=settings.ALIEXPRESS_TARGET_LANGUAGE,
            http_client=http_client,
            rate_limiter=rate_limiter,
        )
    )
    return registry
