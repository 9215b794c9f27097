"""Pytest configuration and shared fixtures."""

from decimal import Decimal
from typing import Callable, List, Optional

import httpx
import pytest

from dealfeed.sources.base import BaseAdapter, Deal, DealSource, FilterHints


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


class FakeClock:
    """Manually advanced time source for cache tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticAdapter(BaseAdapter):
    """Adapter returning canned deals, or raising a canned error."""

    def __init__(
        self,
        source: DealSource,
        deals: Optional[List[Deal]] = None,
        error: Optional[Exception] = None,
        searches_upstream: bool = False,
    ):
        self.source = source
        self.searches_upstream = searches_upstream
        super().__init__()
        self.deals = deals or []
        self.error = error
        self.calls: List[FilterHints] = []

    async def fetch_deals(self, hints: FilterHints) -> List[Deal]:
        self.calls.append(hints)
        if self.error is not None:
            raise self.error
        return list(self.deals)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_deal() -> Callable[..., Deal]:
    """Factory for Deal records with sensible defaults."""
    counter = {"n": 0}

    def _make(
        title: str = "Test deal",
        url: Optional[str] = None,
        source: DealSource = DealSource.SHEETS,
        price=None,
        original_price=None,
        **kwargs,
    ) -> Deal:
        counter["n"] += 1
        n = counter["n"]
        return Deal(
            id=kwargs.pop("id", f"{source.value}:{n}"),
            source=source,
            title=title,
            url=url or f"https://shop.example.com/item/{n}",
            price=Decimal(str(price)) if price is not None else None,
            original_price=Decimal(str(original_price)) if original_price is not None else None,
            **kwargs,
        )

    return _make


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


SHEET_HEADER = ["Image", "Name", "Link", "Price", "Original Price", "Code", "Warehouse", "End Time"]


def sheets_handler(tabs, calls=None):
    """Serve Sheets metadata and batchGet for ``tabs`` (title -> (formatted, formulas))."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request.url.path)
        if request.url.path.endswith("values:batchGet"):
            render = request.url.params["valueRenderOption"]
            titles = [r.strip("'") for r in request.url.params.get_list("ranges")]
            value_ranges = []
            for title in titles:
                formatted, formulas = tabs[title]
                values = formatted if render == "FORMATTED_VALUE" else formulas
                value_ranges.append({"range": title, "values": values})
            return httpx.Response(200, json={"valueRanges": value_ranges})
        return httpx.Response(
            200, json={"sheets": [{"properties": {"title": t}} for t in tabs]}
        )

    return handler
