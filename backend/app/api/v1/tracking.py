"""
Public email tracking endpoints.

These endpoints are unauthenticated because they are embedded in outgoing
emails as pixel URLs, click-through links, and unsubscribe links. Their
response shape is fixed: tracking is best-effort and a failure inside the
pipeline never breaks email rendering, navigation, or the unsubscribe page.

Routes:
    GET  /track/open?t=<tracking_id>                 - 1x1 transparent pixel (records open)
    GET  /track/click?t=<tracking_id>&url=<target>   - Click redirect (records click, redirects)
    GET  /track/unsubscribe?t=<tracking_id>          - Unsubscribe and confirmation page
    POST /track/unsubscribe?t=<tracking_id>          - RFC 8058 one-click unsubscribe
"""

from __future__ import annotations

import html
import logging
from typing import Optional
from urllib.parse import unquote, urlparse

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from app.core.config import settings
from app.services.tracking_service import tracking_service
from app.utils.request_meta import get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/track", tags=["Tracking"])

# Transparent 1x1 GIF pixel (43 bytes)
TRACKING_PIXEL = (
    b"\x47\x49\x46\x38\x39\x61\x01\x00\x01\x00\x80\x00\x00"
    b"\xff\xff\xff\x00\x00\x00\x21\xf9\x04\x01\x00\x00\x00"
    b"\x00\x2c\x00\x00\x00\x00\x01\x00\x01\x00\x00\x02\x02"
    b"\x44\x01\x00\x3b"
)

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _pixel_response() -> Response:
    return Response(content=TRACKING_PIXEL, media_type="image/gif", headers=NO_STORE_HEADERS)


def resolve_redirect_target(url: Optional[str]) -> str:
    """Pick the redirect target for a click.

    ``url`` arrives already decoded once by query parsing. Links that were
    encoded twice by the sender (``https%3A%2F%2F...``) are decoded again.
    Anything that is not an absolute http(s) URL falls back to the
    configured landing page.
    """
    candidate = (url or "").strip()
    if not candidate:
        return settings.fallback_redirect_url

    if "://" not in candidate and "%3a" in candidate.lower():
        candidate = unquote(candidate)

    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        logger.warning("Refusing click redirect to %r, using fallback", candidate[:200])
        return settings.fallback_redirect_url
    return candidate


@router.get("/open")
async def track_open(
    request: Request,
    t: Optional[str] = Query(None, description="Recipient tracking id"),
):
    """Record an email open event and return a 1x1 transparent pixel.

    Embedded in emails as: <img src="{pixel_url}" width="1" height="1" />
    """
    outcome = await tracking_service.record_open(
        t,
        user_agent=request.headers.get("user-agent"),
        ip_address=get_client_ip(request),
    )
    logger.debug("Open tracked for %s: %s", t, outcome.status)
    return _pixel_response()


@router.get("/click")
async def track_click(
    request: Request,
    t: Optional[str] = Query(None, description="Recipient tracking id"),
    url: Optional[str] = Query(None, description="Original destination URL"),
):
    """Record a link click and redirect to the original destination URL.

    Links in emails are rewritten to pass through this endpoint. The redirect
    happens whether or not the click could be recorded.
    """
    target = resolve_redirect_target(url)
    outcome = await tracking_service.record_click(
        t,
        target,
        user_agent=request.headers.get("user-agent"),
        ip_address=get_client_ip(request),
    )
    logger.debug("Click tracked for %s: %s -> %s", t, outcome.status, target[:80])
    return RedirectResponse(url=target, status_code=302, headers={"Cache-Control": "no-store"})


@router.get("/unsubscribe", response_class=HTMLResponse)
@router.post("/unsubscribe", response_class=HTMLResponse)
async def unsubscribe(
    request: Request,
    t: Optional[str] = Query(None, description="Recipient tracking id"),
):
    """Unsubscribe the recipient and render the confirmation page.

    Always 200: the page itself tells the reader whether it worked.
    """
    outcome = await tracking_service.handle_unsubscribe(
        t,
        user_agent=request.headers.get("user-agent"),
        ip_address=get_client_ip(request),
    )

    if outcome.status == "recorded":
        page = _unsubscribe_html("Unsubscribed Successfully", success=True)
    elif not outcome.recipient_found:
        page = _unsubscribe_html("Invalid Link", success=False)
    else:
        page = _unsubscribe_html("Something Went Wrong", success=False)

    return HTMLResponse(content=page, status_code=200, headers=NO_STORE_HEADERS)


def _unsubscribe_html(title: str, success: bool) -> str:
    """Generate the self-contained unsubscribe result page."""
    site_name = html.escape(settings.site_name)
    site_url = html.escape(settings.site_url, quote=True)

    if success:
        icon = "&#10003;"
        color = "#10b981"
        message = (
            "You've been successfully unsubscribed from our marketing emails. "
            "You will no longer receive promotional messages from us."
        )
    else:
        icon = "&#9888;"
        color = "#ef4444"
        message = (
            "We couldn't process your unsubscribe request. "
            "The link may be invalid or expired."
        )

    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="robots" content="noindex">
    <title>Unsubscribe - {site_name}</title>
</head>
<body style="margin:0;padding:0;background-color:#f8fafc;font-family:-apple-system,BlinkMacSystemFont,sans-serif;">
    <div style="max-width:500px;margin:0 auto;">
        <div style="text-align:center;padding:60px 20px;">
            <div style="font-size:48px;color:{color};">{icon}</div>
            <h1 style="color:{color};">{html.escape(title)}</h1>
            <p style="color:#64748b;font-size:18px;">{message}</p>
            <p><a href="{site_url}" style="color:#6366f1;">Return to {site_name}</a></p>
        </div>
    </div>
</body>
</html>"""
