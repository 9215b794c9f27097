"""Tests for money, date and URL normalization."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from dealfeed.sources.utils.normalizer import (
    make_deal_id,
    normalize_url,
    parse_iso,
    parse_money,
    sheet_serial_to_iso,
    store_from_url,
    strip_query,
    to_iso,
)


# ============================================================================
# TESTS: MONEY
# ============================================================================

class TestParseMoney:
    """Tests for locale-ambiguous price parsing."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("39.99", Decimal("39.99")),
            ("1189,99", Decimal("1189.99")),
            ("1.234,56", Decimal("1234.56")),
            ("1,234.56", Decimal("1234.56")),
            ("19,99", Decimal("19.99")),
            ("US$ 12", Decimal("12")),
            ("1 299,00 Ft", Decimal("1299.00")),
            ("1.234.567", Decimal("1234.567")),
        ],
    )
    def test_parses_common_formats(self, raw, expected):
        assert parse_money(raw) == expected

    @pytest.mark.parametrize("raw", ["no data", "", "   ", ".", None, True])
    def test_non_numeric_is_absent(self, raw):
        assert parse_money(raw) is None

    def test_numbers_pass_through(self):
        assert parse_money(30) == Decimal("30")
        assert parse_money(19.99) == Decimal("19.99")

    def test_non_finite_float_is_absent(self):
        assert parse_money(float("nan")) is None
        assert parse_money(float("inf")) is None


# ============================================================================
# TESTS: DATES
# ============================================================================

class TestToIso:
    """Tests for date conversion to ISO-8601."""

    def test_epoch_seconds_and_milliseconds(self):
        assert to_iso(1700000000) == "2023-11-14T22:13:20.000Z"
        assert to_iso(1700000000000) == "2023-11-14T22:13:20.000Z"
        assert to_iso("1700000000") == "2023-11-14T22:13:20.000Z"

    def test_date_strings(self):
        assert to_iso("2025-01-31") == "2025-01-31T00:00:00.000Z"
        assert to_iso("2025-01-31T10:00:00Z") == "2025-01-31T10:00:00.000Z"
        assert to_iso("2025/01/31 23:59") == "2025-01-31T23:59:00.000Z"

    def test_date_objects(self):
        assert to_iso(date(2025, 1, 31)) == "2025-01-31T00:00:00.000Z"
        assert to_iso(datetime(2025, 1, 31, 12, tzinfo=timezone.utc)) == "2025-01-31T12:00:00.000Z"

    @pytest.mark.parametrize("value", ["soon", "", None, "31st of never"])
    def test_unparsable_is_absent(self, value):
        assert to_iso(value) is None

    def test_sheet_serial_dates(self):
        assert sheet_serial_to_iso(45658) == "2025-01-01T00:00:00.000Z"
        assert sheet_serial_to_iso("45658.5") == "2025-01-01T12:00:00.000Z"
        # Not a serial: falls through to regular parsing
        assert sheet_serial_to_iso("2025-01-01") == "2025-01-01T00:00:00.000Z"

    def test_parse_iso_round_trip(self):
        parsed = parse_iso(to_iso("2025-01-31T10:00:00Z"))
        assert parsed == datetime(2025, 1, 31, 10, tzinfo=timezone.utc)
        assert parse_iso("garbage") is None


# ============================================================================
# TESTS: URLS
# ============================================================================

class TestNormalizeUrl:
    """Tests for URL normalization."""

    def test_protocol_relative(self):
        assert normalize_url("//cdn.example.com/a.jpg") == "https://cdn.example.com/a.jpg"

    def test_http_upgraded(self):
        assert normalize_url("http://x.com/a") == "https://x.com/a"
        assert normalize_url("HTTP://x.com/a") == "https://x.com/a"

    def test_unsafe_characters_encoded(self):
        assert normalize_url("https://x.com/a b?q=ü") == "https://x.com/a%20b?q=%C3%BC"

    @pytest.mark.parametrize(
        "raw",
        [
            "http://x.com/a b",
            "//cdn.example.com/img 1.jpg",
            "https://x.com/p?q=a%20b&r=ü",
            "https://www.banggood.com/Foo-Bar-p-123.html?p=ABC",
        ],
    )
    def test_idempotent(self, raw):
        once = normalize_url(raw)
        assert normalize_url(once) == once
        assert once.startswith("https:")

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_is_absent(self, raw):
        assert normalize_url(raw) is None

    def test_strip_query_and_store_inference(self):
        assert strip_query("https://y.com/b?coupon=Z#top") == "https://y.com/b"
        assert store_from_url("https://www.banggood.com/x") == "Banggood"
        assert store_from_url("https://www.geekbuying.com/x") == "Geekbuying"
        assert store_from_url("https://example.com/x") == ""

    def test_deal_id_is_stable(self):
        first = make_deal_id("sheets", "BG Unique", "https://x.com/a", "CODE")
        assert first == make_deal_id("sheets", "BG Unique", "https://x.com/a", "CODE")
        assert first != make_deal_id("sheets", "BG Unique", "https://x.com/a", None)
        assert first.startswith("sheets:")
