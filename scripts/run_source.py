"""Manual source runner for testing and debugging adapters.

Runs one configured adapter (credentials come from the environment / .env)
and prints the deals it returns.

Usage:
    python scripts/run_source.py --source sheets
    python scripts/run_source.py --source banggood --keyword drill --catalog
    python scripts/run_source.py --source aliexpress --top --limit 5
"""

import argparse
import asyncio
import os
import sys

import httpx

# Add backend to path so we can import dealfeed modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from dealfeed.config import settings
from dealfeed.core.logging import configure_logging
from dealfeed.services.cache_service import TokenCache, TTLCache
from dealfeed.sources import build_source_registry
from dealfeed.sources.base import DealSource, FilterHints
from dealfeed.sources.utils.rate_limiter import DomainRateLimiter


def _format_price(amount, currency: str) -> str:
    if amount is None:
        return "-"
    return f"{amount:,.2f} {currency}"


async def run_source(source: DealSource, hints: FilterHints, limit: int) -> int:
    """Fetch from one adapter and display the results.

    Returns:
        Process exit code (1 when the source is degraded)
    """
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        registry = build_source_registry(
            settings,
            http_client=client,
            rate_limiter=DomainRateLimiter(),
            sheets_cache=TTLCache("sheets", ttl_seconds=settings.SHEETS_CACHE_TTL_SECONDS),
            token_cache=TokenCache("banggood_token"),
        )
        adapter = registry.get(source)

        print(f"\n{'=' * 70}")
        print(f"  Running {source.value.upper()} adapter")
        print(f"{'=' * 70}")
        print(f"  Configured: {adapter.is_configured()}")
        if hints.keyword:
            print(f"  Keyword: {hints.keyword}")
        print(f"{'=' * 70}\n")

        result = await adapter.fetch(hints)

    if not result.ok:
        print(f"Source degraded: {result.degraded}\n")
        return 1
    if not result.deals:
        print("No deals found.\n")
        return 0

    print(f"Found {len(result.deals)} deals\n")
    for i, deal in enumerate(result.deals[:limit], 1):
        print(f"[{i}] {deal.title}")
        print(f"    Price: {_format_price(deal.price, deal.currency)}")
        if deal.original_price is not None:
            print(f"    Original: {_format_price(deal.original_price, deal.currency)}")
        if deal.coupon_code:
            print(f"    Code: {deal.coupon_code}")
        if deal.warehouse:
            print(f"    Warehouse: {deal.warehouse}")
        if deal.ends_at:
            print(f"    Ends: {deal.ends_at}")
        print(f"    Store: {deal.resolved_store}")
        print(f"    URL: {deal.outbound_url[:80]}")
        print()

    warehouses = sorted({d.warehouse for d in result.deals if d.warehouse})
    print(f"{'=' * 70}")
    print(f"  Total: {len(result.deals)}  Displayed: {min(limit, len(result.deals))}")
    print(f"  Warehouses: {', '.join(warehouses) or '-'}")
    print(f"{'=' * 70}\n")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run a deal source adapter manually")
    parser.add_argument("--source", required=True, choices=[s.value for s in DealSource])
    parser.add_argument("--keyword", default="", help="Keyword passed to the upstream")
    parser.add_argument("--top", action="store_true", help="Hot products (merchant APIs)")
    parser.add_argument("--catalog", action="store_true", help="Banggood catalog fallback")
    parser.add_argument("--pages", type=int, default=1, help="AliExpress pages to scan")
    parser.add_argument("--limit", type=int, default=10, help="Deals to display")
    args = parser.parse_args()

    configure_logging(debug=False)
    hints = FilterHints(
        keyword=args.keyword,
        top=args.top,
        catalog=args.catalog,
        limit=max(args.limit, 1),
        pages=args.pages,
    )
    sys.exit(asyncio.run(run_source(DealSource(args.source), hints, args.limit)))


if __name__ == "__main__":
    main()
