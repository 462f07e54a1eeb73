"""
Session telemetry endpoints, called fire-and-forget by the hosting page.

Routes:
    POST /sessions/heartbeat - Create-if-absent + activity update
    POST /sessions/geo       - Geo enrichment from the request IP

Both answer 200 with ``{success, reason?}``, including when the store is
unreachable or the request deadline passes. Only a missing session id is a
client error (400).
"""

import logging

from fastapi import APIRouter, Request

from app.core.config import settings
from app.middleware.rate_limit import limiter
from app.schemas.telemetry import GeoAck, GeoSessionRequest, HeartbeatAck, HeartbeatRequest
from app.services.boundary import in_band
from app.services.geo_service import geo_service
from app.services.session_service import session_service
from app.utils.request_meta import get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.post("/heartbeat", response_model=HeartbeatAck, response_model_exclude_none=True)
@limiter.limit(settings.telemetry_rate_limit)
async def heartbeat(request: Request, payload: HeartbeatRequest):
    """Record session activity, creating the session on first sight."""

    async def _record():
        activity = await session_service.heartbeat(
            payload.session_id,
            user_agent=payload.user_agent or request.headers.get("user-agent"),
            page_views=payload.page_views,
            total_seconds=payload.total_seconds,
            client_ip=get_client_ip(request),
        )
        return {
            "success": True,
            "created": activity.created,
            "page_views": activity.page_views,
            "total_seconds": activity.total_seconds,
        }

    return await in_band("heartbeat", payload.session_id, _record())


@router.post("/geo", response_model=GeoAck, response_model_exclude_none=True)
@limiter.limit(settings.telemetry_rate_limit)
async def geo_session(request: Request, payload: GeoSessionRequest):
    """Attach country/city to a session from the caller's IP."""

    async def _enrich():
        result = await geo_service.enrich(payload.session_id, get_client_ip(request))
        return result.to_dict()

    return await in_band("geo", payload.session_id, _enrich())
