"""Health check endpoint."""

from fastapi import APIRouter, Depends

from dealfeed import __version__
from dealfeed.dependencies import get_registry, get_sheets_cache, get_snapshots
from dealfeed.schemas import HealthCheckResponse, SourceHealth
from dealfeed.services.cache_service import SnapshotStore, TTLCache
from dealfeed.sources.factory import SourceRegistry

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    registry: SourceRegistry = Depends(get_registry),
    sheets_cache: TTLCache = Depends(get_sheets_cache),
    snapshots: SnapshotStore = Depends(get_snapshots),
):
    """Return service health status.

    Reports which sources have credentials, how old the spreadsheet cache is
    and which feeds have a fallback snapshot. Upstreams are not called.
    Status is "degraded" when any source lacks credentials.
    """
    sources = {
        adapter.source.value: SourceHealth(configured=adapter.is_configured())
        for adapter in registry.adapters()
    }
    overall_status = "ok" if all(s.configured for s in sources.values()) else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        version=__version__,
        sources=sources,
        sheets_cache_age_seconds=sheets_cache.age_seconds(),
        snapshots=snapshots.feeds(),
    )
