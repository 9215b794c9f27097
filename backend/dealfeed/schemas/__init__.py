"""Pydantic schemas for the deal feed API.

All response models are defined here for easy import.
"""

from dealfeed.schemas.common import ErrorResponse
from dealfeed.schemas.deal import DealResponse
from dealfeed.schemas.feed import FeedMeta, FeedResponse
from dealfeed.schemas.health import HealthCheckResponse, SourceHealth

__all__ = [
    "DealResponse",
    "ErrorResponse",
    "FeedMeta",
    "FeedResponse",
    "HealthCheckResponse",
    "SourceHealth",
]
