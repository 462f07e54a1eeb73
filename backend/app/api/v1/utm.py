"""
UTM attribution endpoint.

Receives the landing page's UTM parameters and upserts the session's
last-touch attribution. Called fire-and-forget, so failures (including an
unreachable store or a missed deadline) are reported in-band with a 200.

Routes:
    POST /utm/track - Upsert attribution for a session
"""

import logging

from fastapi import APIRouter, Request

from app.core.config import settings
from app.middleware.rate_limit import limiter
from app.schemas.telemetry import TelemetryAck, UTMTrackRequest
from app.services.boundary import in_band
from app.services.utm_service import UTM_KEYS, utm_service
from app.utils.request_meta import get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/utm", tags=["UTM"])


@router.post("/track", response_model=TelemetryAck, response_model_exclude_none=True)
@limiter.limit(settings.telemetry_rate_limit)
async def track_utm(request: Request, payload: UTMTrackRequest):
    """Record where a session came from (last touch wins)."""

    async def _attribute():
        result = await utm_service.attribute(
            payload.session_id,
            utm_fields={key: getattr(payload, key) for key in UTM_KEYS},
            landing_page=payload.landing_page,
            referrer=payload.referrer,
            user_agent=payload.user_agent or request.headers.get("user-agent"),
            client_ip=get_client_ip(request),
        )
        return result.to_dict()

    return await in_band("utm", payload.session_id, _attribute())
