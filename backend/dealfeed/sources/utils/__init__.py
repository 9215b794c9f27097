"""Source utilities for rate limiting, retries, signing, and data normalization."""

from .rate_limiter import DomainRateLimiter, TokenBucket
from .normalizer import (
    PriceNormalizer,
    make_deal_id,
    normalize_url,
    parse_money,
    sheet_serial_to_iso,
    store_from_url,
    strip_query,
    to_iso,
)
from .retry import gateway_retrying, http_retry
from .signing import HmacSha256Signer, RequestSigner, SortedParamsMd5Signer


__all__ = [
    # Rate limiting
    "DomainRateLimiter",
    "TokenBucket",
    # Normalization
    "PriceNormalizer",
    "parse_money",
    "to_iso",
    "sheet_serial_to_iso",
    "normalize_url",
    "strip_query",
    "store_from_url",
    "make_deal_id",
    # Retry policies
    "http_retry",
    "gateway_retrying",
    # Signing
    "RequestSigner",
    "SortedParamsMd5Signer",
    "HmacSha256Signer",
]
