"""Outbound link rewriting and redirect page rendering."""

import html
import json
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog

from dealfeed.core.exceptions import InvalidRedirectTarget

logger = structlog.get_logger(__name__)


class LinkRewriter:
    """Adds affiliate and tracking parameters to outbound deal links.

    Parameters already present on the target URL are never overwritten.

    Args:
        affiliate_params: Host suffix -> "param=value" (e.g. {"banggood.com": "p=ABC"})
        utm_source: Value for utm_source
        utm_medium: Value for utm_medium
        utm_campaign: Value for utm_campaign
    """

    def __init__(
        self,
        affiliate_params: Optional[Dict[str, str]] = None,
        utm_source: str = "dealfeed",
        utm_medium: str = "referral",
        utm_campaign: str = "deals",
    ):
        self.affiliate_params = self._parse_affiliate_params(affiliate_params or {})
        self.utm = [
            ("utm_source", utm_source),
            ("utm_medium", utm_medium),
            ("utm_campaign", utm_campaign),
        ]

    @staticmethod
    def _parse_affiliate_params(raw: Dict[str, str]) -> Dict[str, Tuple[str, str]]:
        parsed: Dict[str, Tuple[str, str]] = {}
        for suffix, pair in raw.items():
            name, sep, value = str(pair).partition("=")
            if not sep or not name.strip():
                logger.warning("affiliate_param_ignored", host=suffix, value=pair)
                continue
            parsed[suffix.lower().lstrip(".")] = (name.strip(), value.strip())
        return parsed

    def _affiliate_for(self, host: str) -> Optional[Tuple[str, str]]:
        for suffix, param in self.affiliate_params.items():
            if host == suffix or host.endswith("." + suffix):
                return param
        return None

    def rewrite(self, target: Optional[str], source: str = "", coupon_code: str = "") -> str:
        """Build the final outbound URL.

        Raises:
            InvalidRedirectTarget: If target is missing or not absolute http(s)
        """
        if not target or not target.strip():
            raise InvalidRedirectTarget("Missing u")

        try:
            parts = urlsplit(target.strip())
        except ValueError as e:
            raise InvalidRedirectTarget(f"Invalid u: {e}") from e

        if parts.scheme.lower() not in ("http", "https") or not parts.netloc or not parts.hostname:
            raise InvalidRedirectTarget("Invalid u: absolute http(s) URL required")

        # The caller's query string is kept byte for byte; new pairs are appended
        present = {name for name, _ in parse_qsl(parts.query, keep_blank_values=True)}
        added: List[Tuple[str, str]] = []

        def add(name: str, value: str) -> None:
            if value and name not in present:
                added.append((name, value))
                present.add(name)

        affiliate = self._affiliate_for(parts.hostname.lower())
        if affiliate:
            add(*affiliate)
        for name, value in self.utm:
            add(name, value)
        add("utm_content", source.strip())
        add("utm_term", coupon_code.strip())

        query = "&".join(p for p in (parts.query.rstrip("&"), urlencode(added)) if p)
        return urlunsplit(("https", parts.netloc, parts.path, query, parts.fragment))


def render_redirect_page(url: str) -> str:
    """Minimal self-redirecting page that never leaks a referrer.

    Combines a meta refresh, a no-referrer meta tag, a script redirect and a
    plain link so every browser ends up at the target.
    """
    attr = html.escape(url, quote=True)
    # JSON string literal, with "</" broken up so it cannot close the script
    script_url = json.dumps(url).replace("</", "<\\/")
    return (
        "<!doctype html>\n"
        '<html><head><meta charset="utf-8">\n'
        '<meta name="referrer" content="no-referrer">\n'
        f'<meta http-equiv="refresh" content="0;url={attr}">\n'
        "<title>Redirecting…</title>\n"
        f"<script>location.replace({script_url});</script>\n"
        "</head><body>\n"
        f'<p><a href="{attr}" rel="noreferrer noopener">Continue</a></p>\n'
        "</body></html>\n"
    )
