"""
Append-only engagement event log.

Every physical open/click/unsubscribe request gets its own row, duplicates
included. First-occurrence questions are answered from the terminal fields on
the recipient and audience user, never by counting log rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StoreWriteFailure, ValidationError
from app.db.postgres import async_session_maker
from app.models.campaign import (
    AudienceUser,
    CampaignEvent,
    CampaignRecipient,
    DeviceType,
    EventType,
)

logger = logging.getLogger(__name__)

_EVENT_TYPES = {e.value for e in EventType}
_DEVICE_TYPES = {d.value for d in DeviceType}


@dataclass
class EngagementEvent:
    campaign_id: UUID
    recipient_id: Optional[UUID]
    audience_user_id: Optional[UUID]
    event_type: str
    link_url: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    device_type: Optional[str] = None

    @classmethod
    def for_recipient(cls, recipient: CampaignRecipient, event_type: str, **meta) -> "EngagementEvent":
        return cls(
            campaign_id=recipient.campaign_id,
            recipient_id=recipient.id,
            audience_user_id=recipient.audience_user_id,
            event_type=event_type,
            **meta,
        )


class EventStore:
    """Raw event log writer and first-occurrence reader."""

    def _validate(self, event: EngagementEvent) -> None:
        if event.campaign_id is None:
            raise ValidationError("event has no campaign_id", reason="campaign_id_required")
        if event.event_type not in _EVENT_TYPES:
            raise ValidationError(f"unknown event type {event.event_type!r}", reason="invalid_event_type")
        if event.device_type is not None and event.device_type not in _DEVICE_TYPES:
            raise ValidationError(f"unknown device type {event.device_type!r}", reason="invalid_device_type")
        if event.link_url is not None and event.event_type != EventType.CLICK.value:
            raise ValidationError("link_url is only valid for clicks", reason="invalid_link_url")

    async def record(self, event: EngagementEvent) -> UUID:
        """Append one event row in its own transaction.

        Raises
        ------
        ValidationError
            Malformed event.
        StoreWriteFailure
            The insert or commit failed.
        """
        self._validate(event)

        event_id = uuid4()
        row = CampaignEvent(
            id=event_id,
            campaign_id=event.campaign_id,
            recipient_id=event.recipient_id,
            audience_user_id=event.audience_user_id,
            event_type=event.event_type,
            link_url=event.link_url,
            user_agent=event.user_agent,
            ip_address=event.ip_address,
            device_type=event.device_type,
            created_at=datetime.utcnow(),
        )

        try:
            async with async_session_maker() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreWriteFailure(f"failed to record {event.event_type} event: {exc}") from exc

        logger.debug(
            "Event recorded: type=%s campaign=%s recipient=%s",
            event.event_type,
            event.campaign_id,
            event.recipient_id,
        )
        return event_id

    async def has_prior_event(
        self,
        session: AsyncSession,
        recipient: CampaignRecipient,
        event_type: str,
    ) -> bool:
        """Whether the first occurrence of ``event_type`` has already been applied.

        Reads the current row state, so a concurrent writer that committed
        after the recipient was loaded is still seen.
        """
        if event_type == EventType.OPEN.value:
            column = CampaignRecipient.opened_at
        elif event_type == EventType.CLICK.value:
            column = CampaignRecipient.clicked_at
        elif event_type == EventType.UNSUBSCRIBE.value:
            result = await session.execute(
                select(AudienceUser.is_marketing_allowed).where(
                    AudienceUser.id == recipient.audience_user_id
                )
            )
            return result.scalar_one_or_none() is False
        else:
            raise ValidationError(f"unknown event type {event_type!r}", reason="invalid_event_type")

        result = await session.execute(
            select(column).where(CampaignRecipient.id == recipient.id)
        )
        return result.scalar_one_or_none() is not None


# Singleton instance
event_store = EventStore()
