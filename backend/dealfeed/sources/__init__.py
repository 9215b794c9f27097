"""Deal sources: one adapter per upstream provider.

This package provides:
- Base adapter classes and the canonical Deal record
- Utility modules for rate limiting, retries, request signing and normalization
- Factory wiring adapters to the shared HTTP client and caches
"""

from .base import (
    AdapterResult,
    BaseAdapter,
    BaseAPIAdapter,
    Deal,
    DealSource,
    FilterHints,
)
from .factory import SourceRegistry, build_source_registry

__all__ = [
    # Base classes
    "BaseAdapter",
    "BaseAPIAdapter",
    # Data structures
    "Deal",
    "DealSource",
    "FilterHints",
    "AdapterResult",
    # Factory
    "SourceRegistry",
    "build_source_registry",
]
