"""Data normalization utilities for money, dates, URLs and store names.

Every function here is total: malformed input yields ``None`` instead of
raising, because a missing price or date is a normal state for upstream
data rather than a failure.
"""

import hashlib
import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from email.utils import parsedate_to_datetime
from typing import Any, Optional
from urllib.parse import quote, urlsplit


# Characters left untouched when percent-encoding a URL. Mirrors the
# reserved + unreserved set, plus '%' so existing escapes survive a second pass.
URL_SAFE_CHARS = "!#$&'()*+,/:;=?@[]~%"

# Epoch values at or above this are milliseconds, below are seconds.
EPOCH_MS_THRESHOLD = 100_000_000_000

# Spreadsheet serial dates count days from this epoch.
SHEET_EPOCH = datetime(1899, 12, 30, tzinfo=timezone.utc)
SHEET_SERIAL_MAX = 100_000

_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%Y.%m.%d %H:%M:%S",
    "%Y.%m.%d %H:%M",
    "%Y.%m.%d.",
    "%Y.%m.%d",
    "%d.%m.%Y %H:%M",
    "%d.%m.%Y",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
)

STORE_DOMAINS = (
    ("banggood.", "Banggood"),
    ("geekbuying.", "Geekbuying"),
    ("aliexpress.", "AliExpress"),
)


class PriceNormalizer:
    """Best-effort parsing of locale-ambiguous price strings."""

    @staticmethod
    def parse_money(raw: Any) -> Optional[Decimal]:
        """Parse a price in any common locale into a Decimal.

        Handles:
        - "39.99" -> 39.99
        - "1189,99" -> 1189.99 (comma is the decimal mark when no dot exists)
        - "1.234,56" -> 1234.56 (the last mark is the decimal mark)
        - "1,234.56" -> 1234.56
        - "US$ 12" -> 12

        Args:
            raw: Price as string or number

        Returns:
            Decimal amount, or None when nothing numeric remains
        """
        if raw is None or isinstance(raw, bool):
            return None

        if isinstance(raw, (int, float, Decimal)):
            try:
                value = Decimal(str(raw))
            except InvalidOperation:
                return None
            return value if value.is_finite() else None

        cleaned = re.sub(r"\s+", "", str(raw).replace("\u00a0", " "))
        if not cleaned:
            return None

        has_comma = "," in cleaned
        has_dot = "." in cleaned
        if has_comma and not has_dot:
            cleaned = cleaned.replace(",", ".")
        elif has_comma and has_dot:
            if cleaned.rfind(",") > cleaned.rfind("."):
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")

        cleaned = re.sub(r"[^\d.]", "", cleaned)

        parts = cleaned.split(".")
        if len(parts) > 2:
            cleaned = "".join(parts[:-1]) + "." + parts[-1]

        if not cleaned.strip("."):
            return None

        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            return None

        return value if value.is_finite() else None


parse_money = PriceNormalizer.parse_money


def _format_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_date_string(text: str) -> Optional[datetime]:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        return parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None


def to_iso(value: Any) -> Optional[str]:
    """Convert an epoch number, date-ish string or date object to ISO-8601 UTC.

    Epoch numbers are read as milliseconds when large enough, otherwise as
    seconds. Naive datetimes are taken to be UTC.

    Returns:
        ISO string like "2025-01-31T23:59:59.000Z", or None if unparsable
    """
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return _format_iso(value)

    if isinstance(value, date):
        return _format_iso(datetime(value.year, value.month, value.day))

    if isinstance(value, (int, float, Decimal)):
        try:
            seconds = float(value)
            if abs(seconds) >= EPOCH_MS_THRESHOLD:
                seconds /= 1000.0
            return _format_iso(datetime.fromtimestamp(seconds, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None

    text = str(value).strip()
    if not text:
        return None

    if re.fullmatch(r"-?\d+(\.\d+)?", text):
        return to_iso(Decimal(text))

    parsed = _parse_date_string(text)
    return _format_iso(parsed) if parsed else None


def sheet_serial_to_iso(value: Any) -> Optional[str]:
    """Convert a spreadsheet date cell to ISO-8601.

    Small numbers are spreadsheet serial days (1899-12-30 epoch), everything
    else goes through :func:`to_iso`.
    """
    number = None
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        number = float(value)
    elif isinstance(value, str) and re.fullmatch(r"\d+(\.\d+)?", value.strip()):
        number = float(value.strip())

    if number is not None and 0 < number < SHEET_SERIAL_MAX:
        return _format_iso(SHEET_EPOCH + timedelta(days=number))

    return to_iso(value)


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO string produced by :func:`to_iso` back to an aware datetime."""
    if not value:
        return None
    candidate = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_url(value: Any) -> Optional[str]:
    """Normalize an outbound or image URL to an encoded HTTPS form.

    - "//cdn.example.com/a.jpg" -> "https://cdn.example.com/a.jpg"
    - "http://x.com/a b" -> "https://x.com/a%20b"

    The result is idempotent: normalizing twice changes nothing.

    Returns:
        Normalized URL, or None for empty input
    """
    if value is None:
        return None

    url = str(value).strip()
    if not url:
        return None

    if url.startswith("//"):
        url = "https:" + url
    url = re.sub(r"^http:", "https:", url, flags=re.IGNORECASE)

    return quote(url, safe=URL_SAFE_CHARS)


def strip_query(url: Optional[str]) -> str:
    """Return the URL without its query string and fragment."""
    if not url:
        return ""
    return url.split("#", 1)[0].split("?", 1)[0]


def store_from_url(url: Optional[str]) -> str:
    """Infer a display store name from a URL's domain."""
    if not url:
        return ""
    lowered = url.lower()
    for marker, name in STORE_DOMAINS:
        if marker in lowered:
            return name
    return ""


def host_of(url: Optional[str]) -> str:
    """Lower-cased host of a URL, empty when unparsable."""
    if not url:
        return ""
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def make_deal_id(source: str, *parts: Optional[str]) -> str:
    """Stable deal identity: source prefix plus MD5 of the joined parts."""
    digest = hashlib.md5("|".join(p or "" for p in parts).encode("utf-8")).hexdigest()
    return f"{source}:{digest}"
