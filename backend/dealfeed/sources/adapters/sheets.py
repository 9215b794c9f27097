"""Google Sheets adapter for the curated coupon spreadsheet.

Reads every configured tab of one spreadsheet through the Sheets v4 REST API.
Row 1 of each tab is a header. Columns are located by header name where the
header is recognisable, otherwise by the historical fixed layout:

    image, name, productId, link, originalPrice, discount, price, code,
    quantity, warehouse, categories, startTime, endTime, updateTime

Documentation: https://developers.google.com/sheets/api/reference/rest
"""

import asyncio
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import structlog
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from dealfeed.core.exceptions import CredentialsMissingError, UpstreamAPIError
from dealfeed.services.cache_service import TTLCache
from dealfeed.sources.base import BaseAPIAdapter, Deal, DealSource, FilterHints
from dealfeed.sources.utils.normalizer import (
    make_deal_id,
    normalize_url,
    parse_money,
    sheet_serial_to_iso,
    to_iso,
)
from dealfeed.sources.utils.rate_limiter import DomainRateLimiter

logger = structlog.get_logger(__name__)


SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]

# =IMAGE("https://...") and =HYPERLINK("https://...", "label") carry their URL
# as the first string argument.
FORMULA_URL_RE = re.compile(r'^=\s*(?:IMAGE|HYPERLINK)\s*\(\s*"([^"]*)"', re.IGNORECASE)

# Accepted header names per logical field, most specific first.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "image": ("image", "image url", "img", "picture", "photo"),
    "title": ("name", "title", "product name", "product title", "product"),
    "product_id": ("product id", "productid", "sku"),
    "link": ("link", "url", "deal link", "promo link", "product link"),
    "short_link": ("short link", "short url", "shortlink"),
    "original_price": ("original price", "originalprice", "orig price", "list price", "regular price", "msrp"),
    "discount": ("discount", "off"),
    "price": ("price", "sale price", "deal price", "coupon price", "final price"),
    "code": ("code", "coupon code", "coupon", "promo code"),
    "quantity": ("quantity", "qty", "residual", "remaining"),
    "warehouse": ("warehouse", "wh", "ship from"),
    "categories": ("categories", "category", "tags"),
    "start": ("start time", "starttime", "start date", "start", "starts"),
    "end": ("end time", "endtime", "end date", "end", "expiry", "expires"),
    "updated": ("update time", "updatetime", "updated", "last updated"),
    "store": ("store", "shop", "merchant"),
}

FIXED_OFFSETS: Dict[str, int] = {
    "image": 0,
    "title": 1,
    "product_id": 2,
    "link": 3,
    "original_price": 4,
    "discount": 5,
    "price": 6,
    "code": 7,
    "quantity": 8,
    "warehouse": 9,
    "categories": 10,
    "start": 11,
    "end": 12,
    "updated": 13,
}

# Tab-title prefix -> store shown for rows of that tab
SHEET_STORE_PREFIXES = (
    ("bg ", "Banggood"),
    ("banggood", "Banggood"),
    ("geekbuying", "Geekbuying"),
    ("aliexpress", "AliExpress"),
)


def _normalize_header(value: Any) -> str:
    text = re.sub(r"\s+", " ", str(value or "")).strip().lower()
    return text.rstrip(":").strip()


@dataclass
class ColumnMap:
    """Resolved column positions for one tab."""

    mode: str  # 'header' or 'fixed'
    positions: Dict[str, int]

    def get(self, row: Sequence[Any], field_name: str) -> Any:
        index = self.positions.get(field_name)
        if index is None or index >= len(row):
            return None
        return row[index]


class ColumnResolver:
    """Resolves logical fields to column positions once per tab.

    Header matching is case-insensitive against an ordered alias list. A tab
    whose header yields no title or link column falls back to fixed offsets.
    """

    REQUIRED = ("title", "link")

    def __init__(
        self,
        aliases: Optional[Dict[str, Tuple[str, ...]]] = None,
        fixed_offsets: Optional[Dict[str, int]] = None,
    ):
        self.aliases = aliases or FIELD_ALIASES
        self.fixed_offsets = fixed_offsets or FIXED_OFFSETS

    def resolve(self, header: Sequence[Any]) -> ColumnMap:
        index_by_name: Dict[str, int] = {}
        for i, cell in enumerate(header):
            name = _normalize_header(cell)
            if name and name not in index_by_name:
                index_by_name[name] = i

        positions: Dict[str, int] = {}
        claimed = set()
        for field_name, names in self.aliases.items():
            for alias in names:
                index = index_by_name.get(alias)
                if index is not None and index not in claimed:
                    positions[field_name] = index
                    claimed.add(index)
                    break

        if all(f in positions for f in self.REQUIRED):
            return ColumnMap(mode="header", positions=positions)
        return ColumnMap(mode="fixed", positions=dict(self.fixed_offsets))


def cell_text(value: Any) -> str:
    """Cell value as stripped text ('' for empty)."""
    if value is None:
        return ""
    return str(value).strip()


def formula_url(value: Any) -> Optional[str]:
    """URL argument of an IMAGE/HYPERLINK formula, if the cell is one."""
    match = FORMULA_URL_RE.match(cell_text(value))
    return match.group(1) if match else None


def merge_rendered_rows(
    formatted: List[List[Any]], formulas: List[List[Any]]
) -> List[List[Any]]:
    """Overlay formula URLs onto formatted values.

    Formatted values are what a reader sees; for IMAGE/HYPERLINK cells that is
    empty or a label, so the URL from the formula render wins there.
    """
    merged: List[List[Any]] = []
    for r in range(max(len(formatted), len(formulas))):
        shown = list(formatted[r]) if r < len(formatted) else []
        raw = formulas[r] if r < len(formulas) else []
        if len(raw) > len(shown):
            shown.extend([""] * (len(raw) - len(shown)))
        for c, cell in enumerate(raw):
            url = formula_url(cell)
            if url:
                shown[c] = url
        merged.append(shown)
    return merged


def store_for_sheet(sheet_name: str) -> str:
    lowered = sheet_name.lower()
    for prefix, store in SHEET_STORE_PREFIXES:
        if lowered.startswith(prefix):
            return store
    return ""


class ServiceAccountTokenSource:
    """Bearer tokens for a Google service account (google-auth)."""

    def __init__(self, credentials_json: str):
        info = json.loads(credentials_json)
        if "private_key" in info:
            # Keys pasted into env vars often carry literal "\n"
            info["private_key"] = info["private_key"].replace("\\n", "\n")
        self._credentials = service_account.Credentials.from_service_account_info(
            info, scopes=SHEETS_SCOPES
        )

    async def token(self) -> str:
        if not self._credentials.valid:
            # google-auth refresh is blocking
            await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
        return self._credentials.token


class SpreadsheetAdapter(BaseAPIAdapter):
    """Curated deals from the coupon spreadsheet.

    All rows are cached in a shared TTLCache: a slightly stale read is
    preferred over calling the Sheets API on every request.
    """

    source = DealSource.SHEETS
    store_name = "Sheets"
    API_DOMAIN = "sheets.googleapis.com"

    def __init__(
        self,
        spreadsheet_id: str,
        sheet_names: List[str],
        cache: TTLCache,
        credentials_json: str = "",
        api_key: str = "",
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        column_resolver: Optional[ColumnResolver] = None,
    ):
        super().__init__(http_client=http_client, rate_limiter=rate_limiter)
        self.spreadsheet_id = spreadsheet_id
        self.sheet_names = sheet_names
        self.cache = cache
        self.credentials_json = credentials_json
        self.api_key = api_key
        self.column_resolver = column_resolver or ColumnResolver()
        self._token_source: Optional[ServiceAccountTokenSource] = None

        if not self.is_configured():
            self.logger.warning(
                "sheets_credentials_missing",
                message="SPREADSHEET_ID and GOOGLE_APPLICATION_CREDENTIALS_JSON or GOOGLE_SHEETS_API_KEY not set",
            )

    def is_configured(self) -> bool:
        return bool(self.spreadsheet_id and (self.credentials_json or self.api_key))

    async def fetch_deals(self, hints: FilterHints) -> List[Deal]:
        """Return all live spreadsheet deals (keyword filtering happens downstream)."""
        if not self.is_configured():
            raise CredentialsMissingError(self.source.value)

        deals = await self.cache.get_or_load(self._load_all_deals)
        return list(deals)

    async def refresh(self) -> int:
        """Reload all rows into the cache now; returns the row count.

        Unlike fetch(), failures propagate, and the previously cached rows
        stay in place until a reload succeeds.
        """
        if not self.is_configured():
            raise CredentialsMissingError(self.source.value)

        deals = await self.cache.refresh(self._load_all_deals)
        return len(deals)

    # ------------------------------------------------------------------
    # Sheets API access
    # ------------------------------------------------------------------

    async def _auth(self) -> Tuple[Dict[str, str], Dict[str, str]]:
        """Headers and query params authenticating a Sheets call."""
        if self.credentials_json:
            if self._token_source is None:
                self._token_source = ServiceAccountTokenSource(self.credentials_json)
            token = await self._token_source.token()
            return {"Authorization": f"Bearer {token}"}, {}
        return {}, {"key": self.api_key}

    async def _sheet_titles(self) -> List[str]:
        headers, params = await self._auth()
        data = await self._get_json(
            f"{SHEETS_API_BASE}/{self.spreadsheet_id}",
            params={**params, "fields": "sheets.properties.title"},
            headers=headers,
        )
        return [
            s.get("properties", {}).get("title", "")
            for s in data.get("sheets", [])
        ]

    async def _batch_get(self, titles: List[str], render: str) -> List[List[List[Any]]]:
        headers, params = await self._auth()
        ranges = ["'" + t.replace("'", "''") + "'" for t in titles]
        data = await self._get_json(
            f"{SHEETS_API_BASE}/{self.spreadsheet_id}/values:batchGet",
            params={
                **params,
                "ranges": ranges,
                "majorDimension": "ROWS",
                "valueRenderOption": render,
            },
            headers=headers,
        )
        value_ranges = data.get("valueRanges")
        if not isinstance(value_ranges, list) or len(value_ranges) != len(titles):
            raise UpstreamAPIError(self.source.value, "unexpected batchGet response shape")
        return [vr.get("values", []) for vr in value_ranges]

    async def _read_sheets(self, titles: List[str]) -> Dict[str, List[List[Any]]]:
        """Read tabs as rows, formula URLs merged over formatted values."""
        formatted, formulas = await asyncio.gather(
            self._batch_get(titles, "FORMATTED_VALUE"),
            self._batch_get(titles, "FORMULA"),
        )
        return {
            title: merge_rendered_rows(shown, raw)
            for title, shown, raw in zip(titles, formatted, formulas)
        }

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    async def _load_all_deals(self) -> List[Deal]:
        available = set(await self._sheet_titles())
        wanted = [name for name in self.sheet_names if name in available]
        if not wanted:
            self.logger.warning("no_configured_sheets_found", configured=self.sheet_names)
            return []

        grid = await self._read_sheets(wanted)
        loaded_at = datetime.now(timezone.utc)

        deals: List[Deal] = []
        for sheet_name in wanted:
            rows = grid.get(sheet_name, [])
            if not rows:
                continue
            columns = self.column_resolver.resolve(rows[0])
            skipped = 0
            for row in rows[1:]:
                try:
                    deal = self._map_row(sheet_name, columns, row, loaded_at)
                except ValueError as e:
                    self.logger.debug("row_invalid", sheet=sheet_name, error=str(e))
                    deal = None
                if deal is None:
                    skipped += 1
                    continue
                deals.append(deal)

            self.logger.info(
                "sheet_parsed",
                sheet=sheet_name,
                column_mode=columns.mode,
                rows=len(rows) - 1,
                skipped=skipped,
            )

        return deals

    def _map_row(
        self,
        sheet_name: str,
        columns: ColumnMap,
        row: Sequence[Any],
        loaded_at: datetime,
    ) -> Optional[Deal]:
        """Convert one spreadsheet row to a Deal, or None for unusable rows."""
        title = cell_text(columns.get(row, "title"))
        link = normalize_url(cell_text(columns.get(row, "link")))
        if not title or not link:
            return None

        ends_at = sheet_serial_to_iso(columns.get(row, "end"))
        code = cell_text(columns.get(row, "code")) or None

        deal = Deal(
            id=make_deal_id(self.source.value, sheet_name, link, code),
            source=self.source,
            store=cell_text(columns.get(row, "store")) or store_for_sheet(sheet_name),
            title=title,
            url=link,
            short_url=self._url_cell(columns.get(row, "short_link")),
            image=self._url_cell(columns.get(row, "image")),
            price=parse_money(columns.get(row, "price")),
            original_price=parse_money(columns.get(row, "original_price")),
            currency="USD",
            coupon_code=code,
            warehouse=cell_text(columns.get(row, "warehouse")).upper() or None,
            starts_at=sheet_serial_to_iso(columns.get(row, "start")),
            ends_at=ends_at,
            updated_at=sheet_serial_to_iso(columns.get(row, "updated")) or to_iso(loaded_at),
            tags=self._split_tags(columns.get(row, "categories")),
            residual=self._parse_int(columns.get(row, "quantity")),
        )

        if deal.is_expired(loaded_at):
            return None
        return deal

    @staticmethod
    def _url_cell(value: Any) -> Optional[str]:
        text = cell_text(value)
        if not text.lower().startswith(("http://", "https://", "//")):
            return None
        return normalize_url(text)

    @staticmethod
    def _split_tags(value: Any) -> List[str]:
        return [t.strip() for t in re.split(r"[,;]", cell_text(value)) if t.strip()]

    @staticmethod
    def _parse_int(value: Any) -> Optional[int]:
        amount = parse_money(value)
        if amount is None:
            return None
        return int(amount)
