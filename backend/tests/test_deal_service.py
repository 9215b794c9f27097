"""Tests for the aggregation pipeline: merge, filter, rank, paginate."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from conftest import SHEET_HEADER, StaticAdapter, mock_client, sheets_handler
from dealfeed.services.cache_service import TTLCache
from dealfeed.services.deal_scoring import DealScorer
from dealfeed.services.deal_service import (
    DealQuery,
    DealService,
    collect_meta,
    filter_deals,
    merge,
    paginate,
    parse_cursor,
    sort_deals,
)
from dealfeed.services.search_service import SearchGateway
from dealfeed.sources.adapters.sheets import SpreadsheetAdapter
from dealfeed.sources.base import DealSource
from dealfeed.sources.factory import SourceRegistry
from dealfeed.sources.utils.normalizer import to_iso

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def registry_of(*adapters) -> SourceRegistry:
    registry = SourceRegistry()
    for adapter in adapters:
        registry.register(adapter)
    return registry


# ============================================================================
# TESTS: MERGE / DEDUPE
# ============================================================================

class TestMerge:
    """Tests for cross-source deduplication."""

    def test_first_occurrence_wins(self, make_deal):
        curated = make_deal("Curated", url="https://y.com/b?utm=sheet", coupon_code="Z")
        live = make_deal("Live", url="https://y.com/b?utm=api", coupon_code="Z", source=DealSource.BANGGOOD)

        merged = merge([[curated], [live]])

        assert merged == [curated]

    def test_different_codes_are_distinct(self, make_deal):
        a = make_deal("A", url="https://y.com/b", coupon_code="ONE")
        b = make_deal("B", url="https://y.com/b", coupon_code="TWO")
        c = make_deal("C", url="https://y.com/b")

        assert len(merge([[a, b, c]])) == 3

    def test_empty_lists_contribute_nothing(self, make_deal):
        deal = make_deal()
        assert merge([[], [deal], []]) == [deal]


# ============================================================================
# TESTS: FILTERS
# ============================================================================

class TestFilters:
    """Tests for keyword, warehouse, store and price filters."""

    def test_keyword_matches_title_code_or_tag(self, make_deal):
        by_title = make_deal("Cordless DRILL set")
        by_code = make_deal("Something", coupon_code="DRILL10")
        by_tag = make_deal("Other", tags=["Tools", "Drill"])
        miss = make_deal("Lamp")

        result = filter_deals([by_title, by_code, by_tag, miss], DealQuery(keyword="drill"))

        assert result == [by_title, by_code, by_tag]

    def test_eu_means_known_non_cn_warehouse(self, make_deal):
        cz = make_deal(warehouse="CZ")
        cn = make_deal(warehouse="CN")
        unknown = make_deal()

        assert filter_deals([cz, cn, unknown], DealQuery(warehouse="eu")) == [cz]

    def test_literal_warehouse_is_case_insensitive(self, make_deal):
        cz = make_deal(warehouse="CZ")
        de = make_deal(warehouse="DE")

        assert filter_deals([cz, de], DealQuery(warehouse="cz")) == [cz]

    def test_store_falls_back_to_url_domain(self, make_deal):
        inferred = make_deal(url="https://www.banggood.com/p-1.html")
        explicit = make_deal(store="Geekbuying")

        assert filter_deals([inferred, explicit], DealQuery(store="BANGGOOD")) == [inferred]

    def test_min_price_excludes_cheaper_and_unknown(self, make_deal):
        cheap = make_deal(price=49.99)
        dear = make_deal(price=50)
        unknown = make_deal()

        assert filter_deals([cheap, dear, unknown], DealQuery(min_price=Decimal("50"))) == [dear]

    def test_max_price_keeps_unknown(self, make_deal):
        cheap = make_deal(price=10)
        dear = make_deal(price=80)
        unknown = make_deal()

        assert filter_deals([cheap, dear, unknown], DealQuery(max_price=Decimal("50"))) == [cheap, unknown]


# ============================================================================
# TESTS: SCORING & SORTING
# ============================================================================

class TestScoring:
    """Tests for the default ranking heuristic."""

    def test_non_cn_warehouse_bonus(self, make_deal):
        scorer = DealScorer(now=NOW)
        assert scorer.score(make_deal(warehouse="ES")) == 10
        assert scorer.score(make_deal(warehouse="CN")) == 0
        assert scorer.score(make_deal()) == 0

    def test_expiry_bonus_decays_over_ten_days(self, make_deal):
        scorer = DealScorer(now=NOW)
        tomorrow = make_deal(ends_at=to_iso(NOW + timedelta(days=1)))
        in_twenty = make_deal(ends_at=to_iso(NOW + timedelta(days=20)))

        assert scorer.score(tomorrow) == pytest.approx(9)
        assert scorer.score(in_twenty) == 0

    def test_discount_bonus_capped(self, make_deal):
        scorer = DealScorer(now=NOW)
        assert scorer.score(make_deal(price=90, original_price=100)) == pytest.approx(2)
        assert scorer.score(make_deal(price=30, original_price=60)) == pytest.approx(8)
        assert scorer.score(make_deal(price=60, original_price=60)) == 0

    def test_coupon_bonus_only_when_enabled(self, make_deal):
        deal = make_deal(coupon_code="SAVE")
        assert DealScorer(now=NOW).score(deal) == 0
        assert DealScorer(coupon_bonus=2.0, now=NOW).score(deal) == 2.0


class TestSorting:
    """Tests for explicit sort keys."""

    def test_price_ascending_puts_unknown_last(self, make_deal):
        a, b, none = make_deal(price=20), make_deal(price=5), make_deal()
        assert sort_deals([none, a, b], "price_asc", DealScorer()) == [b, a, none]

    def test_price_descending_puts_unknown_first(self, make_deal):
        a, b, none = make_deal(price=20), make_deal(price=5), make_deal()
        assert sort_deals([a, b, none], "price_desc", DealScorer()) == [none, a, b]

    def test_store_sort(self, make_deal):
        ali = make_deal(store="AliExpress")
        bg = make_deal(store="banggood")
        geek = make_deal(store="Geekbuying")

        assert sort_deals([geek, bg, ali], "store_asc", DealScorer()) == [ali, bg, geek]
        assert sort_deals([geek, ali, bg], "store_desc", DealScorer()) == [geek, bg, ali]

    def test_default_order_is_score_descending_and_stable(self, make_deal):
        plain1, plain2 = make_deal("p1"), make_deal("p2")
        eu = make_deal("eu", warehouse="CZ")

        assert sort_deals([plain1, eu, plain2], None, DealScorer(now=NOW)) == [eu, plain1, plain2]


# ============================================================================
# TESTS: PAGINATION
# ============================================================================

class TestPagination:
    """Tests for offset cursors."""

    def test_pages_are_disjoint_and_cursor_ends(self, make_deal):
        deals = [make_deal(f"d{i}") for i in range(25)]

        first = paginate(deals, 10)
        second = paginate(deals, 10, first.next_cursor)
        third = paginate(deals, 10, second.next_cursor)

        assert first.next_cursor == "10"
        assert second.next_cursor == "20"
        assert third.next_cursor is None
        assert len(third.items) == 5
        ids = [d.id for page in (first, second, third) for d in page.items]
        assert len(ids) == len(set(ids)) == 25

    def test_exact_fit_has_no_next_cursor(self, make_deal):
        deals = [make_deal() for _ in range(10)]
        assert paginate(deals, 10).next_cursor is None

    @pytest.mark.parametrize("cursor, offset", [(None, 0), ("", 0), ("abc", 0), ("-5", 0), ("7", 7)])
    def test_lenient_cursor(self, cursor, offset):
        assert parse_cursor(cursor) == offset

    def test_limit_clamped(self):
        assert DealQuery(limit=0).limit == 1
        assert DealQuery(limit=1000).limit == 200
        assert DealQuery(sort="bogus").sort is None


class TestMeta:
    """Tests for filter metadata."""

    def test_distinct_sorted_values(self, make_deal):
        deals = [
            make_deal(warehouse="DE", store="Geekbuying"),
            make_deal(warehouse="CZ", url="https://www.banggood.com/x"),
            make_deal(warehouse="DE"),
        ]

        meta = collect_meta(deals)

        assert meta["warehouses"] == ["CZ", "DE"]
        assert meta["stores"] == ["Banggood", "Geekbuying"]


# ============================================================================
# TESTS: DEAL SERVICE FAN-OUT
# ============================================================================

class TestDealService:
    """Tests for fan-out and feed building across adapters."""

    async def test_end_to_end_ranking_with_failing_source(self, make_deal, fake_clock):
        rows = [SHEET_HEADER, ["", "A", "http://x.com/a", "19,99", "", "", "", ""]]
        sheets = SpreadsheetAdapter(
            spreadsheet_id="sheet-id",
            sheet_names=["BG Unique"],
            cache=TTLCache("sheets", ttl_seconds=300, clock=fake_clock),
            http_client=mock_client(sheets_handler({"BG Unique": (rows, rows)})),
            api_key="key",
        )
        b = make_deal(
            "B", url="https://y.com/b?coupon=Z", source=DealSource.ALIEXPRESS,
            price=30, original_price=60,
        )
        registry = registry_of(
            sheets,
            StaticAdapter(DealSource.BANGGOOD, error=httpx.ReadTimeout("timed out")),
            StaticAdapter(DealSource.ALIEXPRESS, deals=[b]),
        )
        service = DealService(registry)

        results = await service.fan_out(
            [(s, None) for s in (DealSource.SHEETS, DealSource.BANGGOOD, DealSource.ALIEXPRESS)]
        )
        feed = service.build_feed(results, DealQuery())

        assert [d.title for d in feed.page.items] == ["B", "A"]
        assert feed.page.items[1].url == "https://x.com/a"
        assert feed.page.items[1].price == Decimal("19.99")
        assert feed.degraded_sources == ["banggood"]
        assert feed.page.next_cursor is None

    async def test_expired_deals_never_emitted(self, make_deal):
        past = make_deal("old", ends_at=to_iso(datetime.now(timezone.utc) - timedelta(hours=1)))
        live = make_deal("new", ends_at=to_iso(datetime.now(timezone.utc) + timedelta(days=2)))
        service = DealService(registry_of(StaticAdapter(DealSource.SHEETS, deals=[past, live])))

        feed = await service.source_feed(DealSource.SHEETS, DealQuery())

        assert [d.title for d in feed.page.items] == ["new"]

    async def test_coupons_feed_src_filter(self, make_deal):
        sheets = StaticAdapter(DealSource.SHEETS, deals=[make_deal("s")])
        banggood = StaticAdapter(DealSource.BANGGOOD, deals=[make_deal("b", source=DealSource.BANGGOOD)])
        service = DealService(registry_of(sheets, banggood))

        feed = await service.coupons_feed(DealQuery(), src="banggood")

        assert [d.title for d in feed.page.items] == ["b"]
        assert sheets.calls == []

    async def test_upstream_keyword_results_not_refiltered(self, make_deal):
        curated = make_deal("Drill bits")
        other = make_deal("Unrelated curated row")
        catalog_hit = make_deal("Makita DHP", source=DealSource.BANGGOOD)
        service = DealService(
            registry_of(
                StaticAdapter(DealSource.SHEETS, deals=[curated, other]),
                StaticAdapter(DealSource.BANGGOOD, deals=[catalog_hit], searches_upstream=True),
            )
        )
        gateway = SearchGateway(service)

        feed = await gateway.search(DealQuery(keyword="drill"))

        assert {d.title for d in feed.page.items} == {"Drill bits", "Makita DHP"}


class TestSearchGateway:
    """Tests for source planning in cross-source search."""

    def test_no_keyword_asks_merchants_for_top(self):
        gateway = SearchGateway(DealService(SourceRegistry()))
        plan = dict(gateway.plan(DealQuery()))

        assert set(plan) == {DealSource.SHEETS, DealSource.BANGGOOD, DealSource.ALIEXPRESS}
        assert plan[DealSource.BANGGOOD].top is True
        assert plan[DealSource.ALIEXPRESS].top is True

    def test_keyword_enables_catalog_fallback(self):
        gateway = SearchGateway(DealService(SourceRegistry()))
        plan = dict(gateway.plan(DealQuery(keyword="drill", limit=150)))

        assert plan[DealSource.BANGGOOD].catalog is True
        assert plan[DealSource.BANGGOOD].keyword == "drill"
        assert plan[DealSource.ALIEXPRESS].limit == 100

    @pytest.mark.parametrize(
        "store, expected",
        [
            ("aliexpress", {DealSource.ALIEXPRESS}),
            ("Banggood", {DealSource.SHEETS, DealSource.BANGGOOD}),
            ("geekbuying", {DealSource.SHEETS}),
        ],
    )
    def test_store_narrows_sources(self, store, expected):
        gateway = SearchGateway(DealService(SourceRegistry()))
        assert {s for s, _ in gateway.plan(DealQuery(store=store))} == expected
