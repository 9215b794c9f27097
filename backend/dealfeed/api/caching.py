"""ETag / Cache-Control handling and last-known-good fallback for feeds."""

import hashlib
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from dealfeed.schemas import ErrorResponse, FeedResponse
from dealfeed.services.cache_service import SnapshotStore
from dealfeed.services.deal_service import FeedResult

logger = structlog.get_logger(__name__)

# Keys that change on every build without the data changing
VOLATILE_KEYS = frozenset({"updatedAt"})

DEGRADED_HEADER = "X-Degraded-Sources"
FALLBACK_HEADER = "X-Fallback"


def _without_volatile(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _without_volatile(v) for k, v in value.items() if k not in VOLATILE_KEYS}
    if isinstance(value, list):
        return [_without_volatile(v) for v in value]
    return value


def compute_etag(payload: Dict[str, Any]) -> str:
    """Quoted MD5 of the canonical JSON payload, ignoring timestamps."""
    canonical = json.dumps(
        _without_volatile(payload), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )
    return '"' + hashlib.md5(canonical.encode("utf-8")).hexdigest() + '"'


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """RFC 7232 weak comparison against an If-None-Match header value."""
    if not if_none_match:
        return False
    bare = etag.strip('"')
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate.strip('"') == bare:
            return True
    return False


def render_feed(result: FeedResult) -> Tuple[str, str]:
    """Serialize a feed result; returns (json body, etag)."""
    payload = FeedResponse.from_result(result).model_dump(mode="json", by_alias=True)
    body = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return body, compute_etag(payload)


class FeedResponder:
    """Turns feed producers into cache-aware HTTP responses.

    Every successful body is kept in the SnapshotStore; when producing a
    feed fails outright the newest matching snapshot is served instead.
    """

    def __init__(
        self,
        snapshots: SnapshotStore,
        stale_while_revalidate: int = 60,
        fallback_max_age: int = 60,
    ):
        self.snapshots = snapshots
        self.stale_while_revalidate = stale_while_revalidate
        self.fallback_max_age = fallback_max_age

    def cache_control(self, max_age: int) -> str:
        return f"public, max-age={max_age}, stale-while-revalidate={self.stale_while_revalidate}"

    async def refresh(
        self,
        feed: str,
        query_key: str,
        produce: Callable[[], Awaitable[FeedResult]],
    ) -> Tuple[str, str, FeedResult]:
        """Produce a feed, store it as the snapshot and return (body, etag, result)."""
        result = await produce()
        body, etag = render_feed(result)
        self.snapshots.save(feed, query_key, body, etag)
        return body, etag, result

    async def respond(
        self,
        request: Request,
        feed: str,
        query_key: str,
        max_age: int,
        produce: Callable[[], Awaitable[FeedResult]],
    ) -> Response:
        """Build the HTTP response for a feed request.

        Args:
            request: Incoming request (for If-None-Match)
            feed: Feed name used for snapshot storage
            query_key: Canonical query string of the request
            max_age: Cache lifetime in seconds for a fresh response
            produce: Coroutine factory building the feed
        """
        try:
            body, etag, result = await self.refresh(feed, query_key, produce)
        except Exception as e:
            return self._fallback(feed, query_key, e)

        headers = {"ETag": etag, "Cache-Control": self.cache_control(max_age)}
        if result.degraded:
            headers[DEGRADED_HEADER] = ",".join(result.degraded_sources)

        if etag_matches(request.headers.get("if-none-match"), etag):
            return Response(status_code=304, headers=headers)

        return Response(content=body, media_type="application/json", headers=headers)

    def _fallback(self, feed: str, query_key: str, error: Exception) -> Response:
        snapshot = self.snapshots.get(feed, query_key)
        if snapshot is None:
            logger.error("feed_failed_no_snapshot", feed=feed, error=str(error), error_type=type(error).__name__)
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(error=str(error) or type(error).__name__).model_dump(),
                headers={"Cache-Control": "no-store"},
            )

        logger.warning("serving_snapshot", feed=feed, error=str(error), error_type=type(error).__name__)
        return Response(
            content=snapshot.body,
            media_type="application/json",
            headers={
                "ETag": snapshot.etag,
                "Cache-Control": f"public, max-age={self.fallback_max_age}",
                FALLBACK_HEADER: "snapshot",
            },
        )
