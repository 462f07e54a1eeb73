"""
Conversion telemetry service.

Storefront pages report funnel events (page views, purchases, ...) keyed by a
browser-persistent ``anonymous_id``. Each beacon:

    create visitor if absent -> bump running counters -> first-purchase gate
    -> append raw event

Counters are SQL increments so concurrent beacons never lose an update, and
the purchase gate is a set-if-null on ``converted_at`` so only the first
purchase marks the visitor converted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func, update

from app.core.errors import ValidationError
from app.db.postgres import dialect_insert, get_db
from app.models.conversion import ConversionEvent, ConversionEventType, ConversionVisitor
from app.services.identity import MAX_IDENTIFIER_LENGTH

logger = logging.getLogger(__name__)

# A single page cannot plausibly be open longer than a day
MAX_TIME_ON_PAGE_SECONDS = 86400


def normalize_anonymous_id(anonymous_id: Optional[str]) -> str:
    """Trim and validate a browser-persistent visitor id."""
    value = anonymous_id.strip() if isinstance(anonymous_id, str) else ""
    if not value:
        raise ValidationError("anonymous_id is required", reason="anonymous_id_required")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError("anonymous_id is too long", reason="anonymous_id_invalid")
    return value


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class ConversionResult:
    success: bool
    reason: Optional[str] = None
    first_conversion: bool = False

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "first_conversion": self.first_conversion}
        return {"success": False, "reason": self.reason}


class ConversionService:
    """Visitor funnel counters and the conversion event log."""

    async def track(
        self,
        anonymous_id: str,
        event_type: str,
        session_id: Optional[str] = None,
        page_url: Optional[str] = None,
        page_title: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        time_on_page_seconds: Optional[int] = None,
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversionResult:
        """Record one conversion beacon.

        ``page_viewed`` adds a page view, any positive ``time_on_page_seconds``
        adds to the visitor's total, and the first ``purchase_completed`` marks
        the visitor converted. Every beacon is appended to the event log.

        Raises
        ------
        ValidationError
            Missing or malformed anonymous id. Store errors propagate to the
            caller's boundary.
        """
        anonymous_id = normalize_anonymous_id(anonymous_id)
        event_type = (event_type or "").strip()
        if not event_type:
            raise ValidationError("event_type is required")
        now = datetime.utcnow()
        seconds = min(max(time_on_page_seconds or 0, 0), MAX_TIME_ON_PAGE_SECONDS)

        async with get_db() as session:
            stmt = dialect_insert(session, ConversionVisitor.__table__).values(
                anonymous_id=anonymous_id,
                session_id=session_id,
                user_email=user_email,
                user_agent=user_agent,
                referrer=referrer,
                landing_page=page_url,
                total_page_views=0,
                total_time_seconds=0,
                converted=False,
                first_seen_at=now,
                last_seen_at=now,
            )
            await session.execute(stmt.on_conflict_do_nothing(index_elements=["anonymous_id"]))

            values = {ConversionVisitor.last_seen_at: now}
            if event_type == ConversionEventType.PAGE_VIEWED:
                values[ConversionVisitor.total_page_views] = func.coalesce(ConversionVisitor.total_page_views, 0) + 1
            if seconds:
                values[ConversionVisitor.total_time_seconds] = (
                    func.coalesce(ConversionVisitor.total_time_seconds, 0) + seconds
                )
            if session_id:
                values[ConversionVisitor.session_id] = session_id
            if user_email:
                values[ConversionVisitor.user_email] = user_email
            await session.execute(
                update(ConversionVisitor)
                .where(ConversionVisitor.anonymous_id == anonymous_id)
                .values(values)
                .execution_options(synchronize_session=False)
            )

            first_conversion = False
            if event_type == ConversionEventType.PURCHASE_COMPLETED:
                result = await session.execute(
                    update(ConversionVisitor)
                    .where(
                        ConversionVisitor.anonymous_id == anonymous_id,
                        ConversionVisitor.converted_at.is_(None),
                    )
                    .values(converted=True, converted_at=now)
                    .execution_options(synchronize_session=False)
                )
                first_conversion = result.rowcount == 1

            session.add(
                ConversionEvent(
                    anonymous_id=anonymous_id,
                    session_id=session_id,
                    event_type=event_type,
                    page_url=page_url,
                    page_title=page_title,
                    time_on_page_seconds=seconds if time_on_page_seconds is not None else None,
                    event_metadata=metadata or None,
                    occurred_at=_naive_utc(occurred_at),
                )
            )

        if first_conversion:
            logger.info("Visitor %s converted", anonymous_id)
        logger.debug("Conversion event: visitor=%s type=%s", anonymous_id, event_type)
        return ConversionResult(success=True, first_conversion=first_conversion)


# Singleton instance
conversion_service = ConversionService()
