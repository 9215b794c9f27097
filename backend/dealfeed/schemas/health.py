"""Health check schemas."""

from typing import Dict, Optional

from pydantic import BaseModel


class SourceHealth(BaseModel):
    """Configuration state of one source adapter."""

    configured: bool


class HealthCheckResponse(BaseModel):
    """Health check response schema."""

    status: str
    version: str
    sources: Dict[str, SourceHealth] = {}
    sheets_cache_age_seconds: Optional[float] = None
    snapshots: Dict[str, float] = {}
