"""
Request metadata helpers: client IP extraction and User-Agent device
classification.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Optional

from fastapi import Request

from app.models.campaign import DeviceType

_NON_DESKTOP = re.compile(r"mobile|android|iphone|ipad")
_TABLET = re.compile(r"ipad|tablet")


def classify_device(user_agent: Optional[str]) -> str:
    """Classify a User-Agent as desktop, mobile or tablet.

    Anything matching a mobile marker is non-desktop; among those, iPad or
    tablet markers win over the generic mobile ones (iPad UAs often carry
    "Mobile" too).
    """
    ua = (user_agent or "").lower()
    if not _NON_DESKTOP.search(ua):
        return DeviceType.DESKTOP.value
    if _TABLET.search(ua):
        return DeviceType.TABLET.value
    return DeviceType.MOBILE.value


def get_client_ip(request: Request) -> Optional[str]:
    """Best-effort client IP from proxy headers, falling back to the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for header in ("cf-connecting-ip", "x-real-ip"):
        value = (request.headers.get(header) or "").strip()
        if value:
            return value

    if request.client:
        return request.client.host
    return None


def is_public_ip(ip: Optional[str]) -> bool:
    """True when ``ip`` parses and is globally routable."""
    if not ip:
        return False
    try:
        return ipaddress.ip_address(ip).is_global
    except ValueError:
        return False
