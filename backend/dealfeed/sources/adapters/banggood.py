"""Banggood Affiliate API adapter.

Fetches coupon listings and catalog products from the Banggood affiliate API.
Every call needs an access token obtained from a signed ``/getAccessToken``
request; the token is cached until shortly before it expires.
Documentation: https://affapi.banggood.com (affiliate portal)
"""

import secrets
import time
from typing import Any, Dict, List, Optional

import httpx

from dealfeed.core.exceptions import CredentialsMissingError, UpstreamAPIError
from dealfeed.services.cache_service import TokenCache
from dealfeed.sources.base import BaseAPIAdapter, Deal, DealSource, FilterHints
from dealfeed.sources.utils.normalizer import (
    make_deal_id,
    normalize_url,
    parse_money,
    to_iso,
)
from dealfeed.sources.utils.rate_limiter import DomainRateLimiter
from dealfeed.sources.utils.retry import http_retry
from dealfeed.sources.utils.signing import RequestSigner, SortedParamsMd5Signer


class BanggoodAdapter(BaseAPIAdapter):
    """Banggood coupons and catalog search.

    Modes, chosen from the filter hints:
    - keyword: coupons whose target matches the keyword; when ``catalog`` is
      set and no coupon matches, catalog search results are returned instead
    - top: hot catalog products
    - default: the full (paginated) coupon list
    """

    source = DealSource.BANGGOOD
    store_name = "Banggood"
    searches_upstream = True

    # API Configuration
    API_BASE_URL = "https://affapi.banggood.com"
    API_DOMAIN = "affapi.banggood.com"
    DEFAULT_TOKEN_LIFETIME = 3600

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        token_cache: TokenCache,
        max_pages: int = 5,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        signer: Optional[RequestSigner] = None,
    ):
        super().__init__(http_client=http_client, rate_limiter=rate_limiter)
        self.api_key = api_key
        self.api_secret = api_secret
        self.token_cache = token_cache
        self.max_pages = max_pages
        self.signer = signer or SortedParamsMd5Signer(api_secret)

        if not self.is_configured():
            self.logger.warning(
                "banggood_credentials_missing",
                message="BANGGOOD_API_KEY or BANGGOOD_API_SECRET not set",
            )

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    async def fetch_deals(self, hints: FilterHints) -> List[Deal]:
        if not self.is_configured():
            raise CredentialsMissingError(self.source.value)

        keyword = hints.keyword.strip()
        if keyword:
            return await self._search(keyword, hints)
        if hints.top:
            products = await self._product_list(keyword="", sort="hot")
            # One extra item tells the paginator another page exists
            return self.map_items(products, self._map_product)[: hints.limit + 1]
        return await self._all_coupons()

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    async def _search(self, keyword: str, hints: FilterHints) -> List[Deal]:
        """Keyword-matching coupons, with optional catalog fallback."""
        needle = keyword.lower()
        coupons = self.map_items(await self._coupon_page(1), self._map_coupon)
        matching = [
            d for d in coupons
            if needle in d.title.lower() or needle in (d.coupon_code or "").lower()
        ]
        self.logger.info("coupon_search", keyword=keyword, scanned=len(coupons), matched=len(matching))

        if matching or not hints.catalog:
            return matching

        products = await self._product_list(keyword=keyword)
        self.logger.info("catalog_fallback", keyword=keyword, count=len(products))
        return self.map_items(products, self._map_product)

    async def _all_coupons(self) -> List[Deal]:
        """Walk the coupon list up to max_pages."""
        deals: List[Deal] = []
        page, pages = 1, 1
        while page <= min(pages, self.max_pages):
            result = await self._call("/coupon/list", {"type": 2, "page": page})
            deals.extend(self.map_items(result.get("coupon_list") or [], self._map_coupon))
            pages = int(result.get("page_total") or page)
            page += 1
        return deals

    async def _coupon_page(self, page: int) -> List[Dict[str, Any]]:
        result = await self._call("/coupon/list", {"type": 2, "page": page})
        return result.get("coupon_list") or []

    async def _product_list(self, keyword: str, sort: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"keyword": keyword, "page": 1}
        if sort:
            params["sort"] = sort
        result = await self._call("/product/list", params)
        return result.get("product_list") or []

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _access_token(self) -> str:
        """Return a cached token or obtain a new one (serialized across callers)."""
        token = self.token_cache.get()
        if token:
            return token

        async with self.token_cache.lock:
            token = self.token_cache.get()
            if token:
                return token

            params = self.signer.signed(
                {
                    "api_key": self.api_key,
                    "noncestr": secrets.token_hex(8),
                    "timestamp": int(time.time()),
                }
            )
            data = await self._request(f"{self.API_BASE_URL}/getAccessToken", params)
            result = self._unwrap(data)
            token = result.get("access_token")
            if not token:
                raise UpstreamAPIError(self.source.value, "no access_token in response")

            lifetime = float(result.get("expires_in") or self.DEFAULT_TOKEN_LIFETIME)
            self.token_cache.store(token, lifetime)
            return token

    async def _call(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        token = await self._access_token()
        data = await self._request(
            f"{self.API_BASE_URL}{path}", params, headers={"access-token": token}
        )
        try:
            return self._unwrap(data)
        except UpstreamAPIError:
            # Token may have been revoked early; next call fetches a new one
            self.token_cache.invalidate()
            raise

    @http_retry
    async def _request(
        self,
        url: str,
        params: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        return await self._get_json(url, params=params, headers=headers)

    def _unwrap(self, data: Any) -> Dict[str, Any]:
        """Return the ``result`` object or raise on a business error code."""
        if not isinstance(data, dict):
            raise UpstreamAPIError(self.source.value, "malformed response")
        code = data.get("code")
        if code not in (None, 0, "0"):
            raise UpstreamAPIError(self.source.value, str(data.get("msg") or "request rejected"), code=str(code))
        result = data.get("result")
        return result if isinstance(result, dict) else {}

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _title_from_link(link: str) -> str:
        """Readable name from a promo link slug: .../Some-Product-p-123.html -> 'Some Product p 123.html'."""
        slug = link.rstrip("/").split("/")[-1]
        slug = slug.split("?", 1)[0].split("!", 1)[0]
        return slug.replace("-", " ").strip()

    def _map_coupon(self, item: Dict[str, Any]) -> Optional[Deal]:
        standard = item.get("promo_link_standard") or ""
        url = normalize_url(standard)
        if not url:
            return None

        code = item.get("coupon_code") or None
        title = (item.get("only_for") or "").strip() or self._title_from_link(standard)
        residual = item.get("coupon_residual")
        price = parse_money(item.get("condition"))
        if price is None:
            price = parse_money(item.get("original_price"))

        return Deal(
            id=make_deal_id(self.source.value, standard, code),
            source=self.source,
            store=self.store_name,
            title=title or "Banggood deal",
            url=url,
            short_url=normalize_url(item.get("promo_link_short")),
            image=normalize_url(item.get("coupon_img")),
            price=price,
            original_price=parse_money(item.get("original_price")),
            currency=item.get("currency") or "USD",
            coupon_code=code,
            warehouse=(item.get("warehouse") or "").upper() or None,
            starts_at=to_iso(item.get("coupon_date_start")),
            ends_at=to_iso(item.get("coupon_date_end")),
            updated_at=to_iso(time.time()),
            residual=int(residual) if residual not in (None, "") else None,
        )

    def _map_product(self, item: Dict[str, Any]) -> Optional[Deal]:
        url = normalize_url(item.get("product_url"))
        title = (item.get("product_name") or "").strip()
        if not url or not title:
            return None

        price = item.get("product_coupon_price")
        if price in (None, ""):
            price = item.get("product_price")

        return Deal(
            id=f"bg-prod:{item['product_id']}",
            source=self.source,
            store=self.store_name,
            title=title,
            url=url,
            image=normalize_url(item.get("view_image")),
            price=parse_money(price),
            original_price=parse_money(item.get("product_price")),
            currency="USD",
            coupon_code=item.get("coupon_code") or None,
            updated_at=to_iso(time.time()),
        )
