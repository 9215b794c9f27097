"""AliExpress Affiliate API adapter.

Fetches products from the AliExpress affiliate business interface.
Documentation: https://openservice.aliexpress.com/doc/api.htm
"""

import time
from typing import Any, Dict, List, Optional

import httpx

from dealfeed.core.exceptions import CredentialsMissingError, UpstreamAPIError
from dealfeed.sources.base import BaseAPIAdapter, Deal, DealSource, FilterHints
from dealfeed.sources.utils.normalizer import make_deal_id, normalize_url, parse_money, to_iso
from dealfeed.sources.utils.rate_limiter import DomainRateLimiter
from dealfeed.sources.utils.retry import gateway_retrying
from dealfeed.sources.utils.signing import HmacSha256Signer, RequestSigner


class AliExpressAdapter(BaseAPIAdapter):
    """AliExpress keyword search and hot products.

    Each call is signed individually (HMAC-SHA256), so there is no bearer
    token to cache. Transport failures are retried against the alternate
    gateway with a longer timeout; business error codes are not retried.
    """

    source = DealSource.ALIEXPRESS
    store_name = "AliExpress"
    searches_upstream = True

    # API Configuration
    SEARCH_METHOD = "aliexpress.affiliate.product.query"
    HOT_METHOD = "aliexpress.affiliate.hotproduct.query"
    PAGE_SIZE = 50  # API maximum
    MAX_PAGES = 6
    ATTEMPT_TIMEOUTS = (6.0, 9.0, 12.0)

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        tracking_id: str = "",
        api_urls: Optional[List[str]] = None,
        target_currency: str = "USD",
        target_language: str = "EN",
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        signer: Optional[RequestSigner] = None,
    ):
        super().__init__(http_client=http_client, rate_limiter=rate_limiter)
        self.app_key = app_key
        self.app_secret = app_secret
        self.tracking_id = tracking_id
        self.api_urls = api_urls or ["https://api-sg.aliexpress.com/sync"]
        self.target_currency = target_currency
        self.target_language = target_language
        self.signer = signer or HmacSha256Signer(app_secret)

        if not self.is_configured():
            self.logger.warning(
                "aliexpress_credentials_missing",
                message="ALIEXPRESS_APP_KEY or ALIEXPRESS_APP_SECRET not set",
            )

    def is_configured(self) -> bool:
        return bool(self.app_key and self.app_secret)

    async def fetch_deals(self, hints: FilterHints) -> List[Deal]:
        """Fetch pages until offset + limit is exceeded, bounded by hints.pages.

        Keyword mode when a keyword is given, hot products otherwise.
        """
        if not self.is_configured():
            raise CredentialsMissingError(self.source.value)

        keyword = hints.keyword.strip()
        method = self.SEARCH_METHOD if keyword else self.HOT_METHOD
        pages = max(1, min(self.MAX_PAGES, hints.pages))
        # One past the window, so the paginator can tell another page exists
        needed = hints.offset + hints.limit + 1

        collected: List[Dict[str, Any]] = []
        page_no = 1
        while len(collected) < needed and page_no <= pages:
            params: Dict[str, Any] = {
                "page_no": page_no,
                "page_size": self.PAGE_SIZE,
                "tracking_id": self.tracking_id,
                "target_currency": self.target_currency,
                "target_language": self.target_language,
            }
            if keyword:
                params["keywords"] = keyword

            result = await self.call(method, params)
            products = self._pick_products(result)
            if not products:
                break
            collected.extend(products)
            page_no += 1

        self.logger.info("aliexpress_pages_fetched", method=method, pages=page_no - 1, items=len(collected))
        return self.map_items(collected, self._map_product)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def call(self, method: str, api_params: Dict[str, Any]) -> Dict[str, Any]:
        """Invoke one business method and return its ``result`` object.

        Attempt n goes to ``api_urls[n % len(api_urls)]`` with the n-th
        per-attempt timeout.

        Raises:
            UpstreamAPIError: On an error_response or non-200 resp_code
            httpx.TimeoutException / httpx.NetworkError: When all attempts fail
        """
        async for attempt in gateway_retrying(max_attempts=len(self.ATTEMPT_TIMEOUTS)):
            with attempt:
                n = attempt.retry_state.attempt_number - 1
                url = self.api_urls[n % len(self.api_urls)]
                params = self.signer.signed(
                    {
                        "app_key": self.app_key,
                        "sign_method": "sha256",
                        "timestamp": int(time.time() * 1000),
                        "format": "json",
                        "method": method,
                        **api_params,
                    }
                )
                self.logger.debug("aliexpress_call", method=method, endpoint=url, attempt=n + 1)
                data = await self._get_json(url, params=params, timeout=self.ATTEMPT_TIMEOUTS[n])
        return self._unwrap(data)

    def _unwrap(self, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise UpstreamAPIError(self.source.value, "malformed response")

        error = data.get("error_response")
        if error:
            raise UpstreamAPIError(self.source.value, str(error.get("msg") or "request rejected"), code=error.get("code"))

        root_key = next((k for k in data if k.endswith("_response")), None)
        root = (data.get(root_key) or {}) if root_key else {}
        resp_result = root.get("resp_result") or {}
        result = resp_result.get("result") or {}

        resp_code = resp_result.get("resp_code", result.get("resp_code") if isinstance(result, dict) else None)
        if resp_code is not None and str(resp_code) != "200":
            raise UpstreamAPIError(
                self.source.value,
                str(resp_result.get("resp_msg") or "unexpected response"),
                code=str(resp_code),
            )
        return result if isinstance(result, dict) else {"items": result}

    @staticmethod
    def _pick_products(result: Dict[str, Any]) -> List[Dict[str, Any]]:
        for container in ("products", "hot_products"):
            products = (result.get(container) or {}).get("product")
            if isinstance(products, list):
                return products
        items = result.get("items")
        return items if isinstance(items, list) else []

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def _map_product(self, item: Dict[str, Any]) -> Optional[Deal]:
        promo = normalize_url(item.get("promotion_link"))
        detail = normalize_url(item.get("product_detail_url"))
        url = detail or promo
        title = (item.get("product_title") or item.get("subject") or "").strip()
        if not url or not title:
            return None

        small_images = (item.get("product_small_image_urls") or {}).get("string") or []
        image = (
            normalize_url(item.get("product_main_image_url"))
            or normalize_url(item.get("image_url"))
            or (normalize_url(small_images[0]) if small_images else None)
        )

        price = self._first_present(
            item, "target_sale_price", "target_app_sale_price", "app_sale_price", "sale_price"
        )
        original = self._first_present(item, "target_original_price", "original_price")
        currency = (
            item.get("target_sale_price_currency")
            or item.get("app_sale_price_currency")
            or item.get("sale_price_currency")
            or "USD"
        )
        tags = [
            item[key] for key in ("first_level_category_name", "second_level_category_name")
            if item.get(key)
        ]

        return Deal(
            id=self._deal_id(item, title, url),
            source=self.source,
            store=self.store_name,
            title=title,
            url=url,
            short_url=promo,
            image=image,
            price=parse_money(price),
            original_price=parse_money(original),
            currency=str(currency),
            updated_at=to_iso(time.time()),
            tags=tags,
        )

    @staticmethod
    def _first_present(item: Dict[str, Any], *keys: str) -> Any:
        for key in keys:
            if item.get(key) not in (None, ""):
                return item[key]
        return None

    def _deal_id(self, item: Dict[str, Any], title: str, url: str) -> str:
        product_id = item.get("product_id")
        if product_id:
            return f"{self.source.value}:{product_id}"
        return make_deal_id(self.source.value, title, url)
