"""
Campaign engagement models: campaigns, audience users, per-recipient
tracking rows, and the raw engagement event log.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db.postgres import Base


class RecipientStatus(str, Enum):
    """Per-recipient engagement status. Only ever moves forward."""
    SENT = "sent"
    OPENED = "opened"
    CLICKED = "clicked"


# Forward ordering used by the status advance statement
STATUS_RANK = {
    RecipientStatus.SENT.value: 0,
    RecipientStatus.OPENED.value: 1,
    RecipientStatus.CLICKED.value: 2,
}


class EventType(str, Enum):
    """Engagement event types written to campaign_events."""
    OPEN = "open"
    CLICK = "click"
    UNSUBSCRIBE = "unsubscribe"


class DeviceType(str, Enum):
    """Device classification derived from the User-Agent."""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"


class Campaign(Base):
    """Email campaign with running engagement counters."""

    __tablename__ = "campaigns"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    status = Column(String(50), default="draft")  # draft, sending, sent

    # Running counters, incremented once per recipient per event type
    sent_count = Column(Integer, nullable=False, default=0)
    open_count = Column(Integer, nullable=False, default=0)
    click_count = Column(Integer, nullable=False, default=0)
    unsubscribe_count = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    recipients = relationship("CampaignRecipient", back_populates="campaign")


class AudienceUser(Base):
    """Addressable marketing contact."""

    __tablename__ = "audience_users"

    id = Column(Uuid, primary_key=True, default=uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)

    # Consent
    is_marketing_allowed = Column(Boolean, nullable=True, default=True)
    unsubscribed_at = Column(DateTime, nullable=True)

    # Engagement counters
    total_opens = Column(Integer, nullable=False, default=0)
    total_clicks = Column(Integer, nullable=False, default=0)
    last_engaged_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    recipients = relationship("CampaignRecipient", back_populates="audience_user")


class CampaignRecipient(Base):
    """One (campaign, audience user) pairing, addressed by its tracking id.

    Rows are created by the send pipeline; this service only reads them and
    moves ``status``, ``opened_at`` and ``clicked_at`` forward.
    """

    __tablename__ = "campaign_recipients"

    id = Column(Uuid, primary_key=True, default=uuid4)
    campaign_id = Column(Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    audience_user_id = Column(Uuid, ForeignKey("audience_users.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=False)
    tracking_id = Column(String(255), unique=True, nullable=True, index=True)

    status = Column(String(50), nullable=False, default=RecipientStatus.SENT.value)
    sent_at = Column(DateTime, nullable=True)
    opened_at = Column(DateTime, nullable=True)  # first open only
    clicked_at = Column(DateTime, nullable=True)  # first click only

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    campaign = relationship("Campaign", back_populates="recipients")
    audience_user = relationship("AudienceUser", back_populates="recipients")


class CampaignEvent(Base):
    """Append-only engagement log. One row per physical request, never deduplicated."""

    __tablename__ = "campaign_events"
    __table_args__ = (
        Index("idx_campaign_events_campaign_type", "campaign_id", "event_type"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    campaign_id = Column(Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    recipient_id = Column(Uuid, ForeignKey("campaign_recipients.id", ondelete="SET NULL"), nullable=True)
    audience_user_id = Column(Uuid, ForeignKey("audience_users.id", ondelete="SET NULL"), nullable=True)

    event_type = Column(String(20), nullable=False)  # open, click, unsubscribe
    link_url = Column(Text, nullable=True)  # click only

    # Request metadata
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    device_type = Column(String(20), nullable=True)  # desktop, mobile, tablet

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
