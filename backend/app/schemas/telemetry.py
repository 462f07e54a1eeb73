"""
Request/response schemas for the session and conversion telemetry endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SessionPayload(BaseModel):
    """Base for every payload keyed by a client session id."""

    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(..., max_length=255)

    @field_validator("session_id", mode="before")
    @classmethod
    def _strip_session_id(cls, value):
        if isinstance(value, str):
            value = value.strip()
        if not value:
            raise ValueError("session_id is required")
        return value


class HeartbeatRequest(SessionPayload):
    """Periodic heartbeat / page view report."""
    user_agent: Optional[str] = None
    page_views: int = Field(1, ge=0, le=1000)  # views since the previous beat
    total_seconds: Optional[int] = Field(None, ge=0)


class GeoSessionRequest(SessionPayload):
    """Geo enrichment trigger. The IP comes from the request itself."""
    pass


class UTMTrackRequest(SessionPayload):
    """Landing attribution report."""
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_term: Optional[str] = None
    landing_page: Optional[str] = None
    referrer: Optional[str] = None
    user_agent: Optional[str] = None


class TelemetryAck(BaseModel):
    """In-band result. Telemetry endpoints answer 200 with this even on failure."""
    success: bool
    reason: Optional[str] = None


class HeartbeatAck(TelemetryAck):
    created: Optional[bool] = None
    page_views: Optional[int] = None
    total_seconds: Optional[int] = None


class GeoAck(TelemetryAck):
    country: Optional[str] = None
    city: Optional[str] = None


class ConversionTrackRequest(BaseModel):
    """Storefront funnel event, keyed by the browser-persistent visitor id."""

    model_config = ConfigDict(extra="ignore")

    anonymous_id: str = Field(..., max_length=255)
    event_type: str = Field(..., min_length=1, max_length=64)
    session_id: Optional[str] = Field(None, max_length=255)
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    timestamp: Optional[datetime] = None
    time_on_page_seconds: Optional[int] = Field(None, ge=0)
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    user_email: Optional[str] = Field(None, max_length=255)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("anonymous_id", mode="before")
    @classmethod
    def _strip_anonymous_id(cls, value):
        if isinstance(value, str):
            value = value.strip()
        if not value:
            raise ValueError("anonymous_id is required")
        return value

    @field_validator("event_type", mode="before")
    @classmethod
    def _strip_event_type(cls, value):
        return value.strip() if isinstance(value, str) else value


class ConversionAck(TelemetryAck):
    first_conversion: Optional[bool] = None
