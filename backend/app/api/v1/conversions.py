"""
Conversion telemetry endpoint, called fire-and-forget by storefront pages.

Routes:
    POST /conversions/track - Funnel event for an anonymous visitor

Answers 200 with ``{success, reason?}``; only a missing anonymous id is a
client error (400).
"""

import logging

from fastapi import APIRouter, Request

from app.core.config import settings
from app.middleware.rate_limit import limiter
from app.schemas.telemetry import ConversionAck, ConversionTrackRequest
from app.services.boundary import in_band
from app.services.conversion_service import conversion_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversions", tags=["Conversions"])


@router.post("/track", response_model=ConversionAck, response_model_exclude_none=True)
@limiter.limit(settings.telemetry_rate_limit)
async def track_conversion(request: Request, payload: ConversionTrackRequest):
    """Count a funnel event and append it to the conversion log."""

    async def _track():
        result = await conversion_service.track(
            payload.anonymous_id,
            payload.event_type,
            session_id=payload.session_id,
            page_url=payload.page_url,
            page_title=payload.page_title,
            occurred_at=payload.timestamp,
            time_on_page_seconds=payload.time_on_page_seconds,
            referrer=payload.referrer,
            user_agent=payload.user_agent or request.headers.get("user-agent"),
            user_email=payload.user_email,
            metadata=payload.metadata,
        )
        return result.to_dict()

    return await in_band("conversion", payload.anonymous_id, _track())
