"""
Geo enrichment for visitor sessions.

Resolves the caller's IP to (country, city) through an ipapi.co compatible
HTTP endpoint and writes the result onto the session. The lookup is
best-effort: one attempt with a bounded timeout, no retry, and every failure
comes back as a reason code rather than an exception.

Successful lookups are cached in Redis per IP so repeat visitors from the
same address do not spend the upstream rate limit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
from urllib.parse import quote

import httpx
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.errors import UpstreamUnavailable
from app.db.postgres import get_db
from app.db.redis import redis_client
from app.models.session import UserSession
from app.services.identity import normalize_session_id
from app.utils.request_meta import is_public_ip

logger = logging.getLogger(__name__)

GEO_CACHE_PREFIX = "geo:ip:"


@dataclass
class GeoResult:
    success: bool
    reason: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "country": self.country, "city": self.city}
        return {"success": False, "reason": self.reason}


class GeoService:
    """IP geolocation and session enrichment."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.geo_lookup_timeout,
                headers={"User-Agent": settings.geo_user_agent},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _cached(self, ip: str) -> Optional[Tuple[Optional[str], Optional[str]]]:
        try:
            cached = await redis_client.get_json(f"{GEO_CACHE_PREFIX}{ip}")
        except Exception as exc:
            logger.warning("Geo cache read failed for %s: %s", ip, exc)
            return None
        if not cached:
            return None
        return cached.get("country"), cached.get("city")

    async def _store(self, ip: str, country: Optional[str], city: Optional[str]) -> None:
        try:
            await redis_client.set_json(
                f"{GEO_CACHE_PREFIX}{ip}",
                {"country": country, "city": city},
                ex=settings.geo_cache_ttl,
            )
        except Exception as exc:
            logger.warning("Geo cache write failed for %s: %s", ip, exc)

    async def lookup(self, ip: str) -> Tuple[Optional[str], Optional[str]]:
        """Resolve ``ip`` to (country, city).

        Raises
        ------
        UpstreamUnavailable
            With reason ``geo_timeout`` or ``geo_lookup_failed``.
        """
        cached = await self._cached(ip)
        if cached is not None:
            return cached

        url = settings.geo_lookup_url.format(ip=quote(ip, safe=""))
        try:
            response = await self._get_client().get(url)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable(f"geo lookup timed out for {ip}", reason="geo_timeout") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"geo lookup failed for {ip}: {exc}", reason="geo_lookup_failed") from exc

        if not response.is_success:
            raise UpstreamUnavailable(
                f"geo lookup returned {response.status_code} for {ip}",
                reason="geo_lookup_failed",
            )

        try:
            geo = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"geo lookup returned invalid JSON for {ip}", reason="geo_lookup_failed") from exc

        # ipapi.co reports rate limiting and reserved ranges as 200 + {"error": true}
        if not isinstance(geo, dict) or geo.get("error"):
            raise UpstreamUnavailable(f"geo lookup error payload for {ip}", reason="geo_lookup_failed")

        country = geo.get("country_name") if isinstance(geo.get("country_name"), str) else None
        city = geo.get("city") if isinstance(geo.get("city"), str) else None
        country = country or None
        city = city or None

        if country or city:
            await self._store(ip, country, city)
        return country, city

    async def enrich(self, session_id: str, client_ip: Optional[str]) -> GeoResult:
        """Write the caller's location onto a session.

        Only ``country``, ``city`` and ``last_active_at`` are touched. The
        session is never created here.

        Raises
        ------
        ValidationError
            Missing or malformed session id. Every other failure is reported
            through ``GeoResult.reason``.
        """
        session_id = normalize_session_id(session_id)

        if not is_public_ip(client_ip):
            return GeoResult(success=False, reason="ip_unavailable")

        try:
            country, city = await self.lookup(client_ip)
        except UpstreamUnavailable as exc:
            logger.warning("Geo enrichment skipped for session %s: %s", session_id, exc)
            return GeoResult(success=False, reason=exc.reason)

        if not country and not city:
            return GeoResult(success=False, reason="no_location")

        try:
            async with get_db() as session:
                result = await session.execute(
                    update(UserSession)
                    .where(UserSession.session_id == session_id)
                    .values(country=country, city=city, last_active_at=datetime.utcnow())
                    .execution_options(synchronize_session=False)
                )
                updated = result.rowcount
        except SQLAlchemyError as exc:
            logger.error("Geo update failed for session %s: %s", session_id, exc)
            return GeoResult(success=False, reason="db_update_failed")

        if not updated:
            return GeoResult(success=False, reason="session_not_found")

        logger.info("Session %s located in %s / %s", session_id, country, city)
        return GeoResult(success=True, country=country, city=city)


# Singleton instance
geo_service = GeoService()
