"""Outbound redirect endpoint."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response

from dealfeed.config import settings
from dealfeed.core.exceptions import InvalidRedirectTarget
from dealfeed.dependencies import get_link_rewriter
from dealfeed.services.link_rewriter import LinkRewriter, render_redirect_page

logger = structlog.get_logger(__name__)

router = APIRouter()

NO_REFERRER_HEADERS = {
    "Cache-Control": "no-store",
    "Referrer-Policy": "no-referrer",
}


@router.get("/go")
async def go(
    u: Optional[str] = Query(None, description="Target URL"),
    src: str = Query("", description="Source tag, added as utm_content"),
    code: str = Query("", description="Coupon code, added as utm_term"),
    mode: Optional[str] = Query(None, pattern="^(html|302)$", description="Override REDIRECT_MODE"),
    rewriter: LinkRewriter = Depends(get_link_rewriter),
) -> Response:
    """Redirect to a merchant with affiliate and UTM parameters added.

    The referrer is never passed on: either a 302 with Referrer-Policy, or an
    HTML page that redirects itself.
    """
    try:
        target = rewriter.rewrite(u, source=src, coupon_code=code)
    except InvalidRedirectTarget as e:
        logger.info("redirect_rejected", target=u, reason=e.message)
        return PlainTextResponse(e.message, status_code=400, headers={"Cache-Control": "no-store"})

    logger.info("redirect", src=src or None, has_code=bool(code))
    if (mode or settings.REDIRECT_MODE) == "302":
        return RedirectResponse(target, status_code=302, headers=NO_REFERRER_HEADERS)
    return HTMLResponse(render_redirect_page(target), headers=NO_REFERRER_HEADERS)
