"""
Conversion telemetry models: per-visitor funnel counters and the raw event log.
"""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text, Uuid

from app.db.postgres import Base


class ConversionEventType:
    PAGE_VIEWED = "page_viewed"
    PURCHASE_COMPLETED = "purchase_completed"


class ConversionVisitor(Base):
    """Running funnel counters for one anonymous visitor.

    Keyed by the browser-persistent ``anonymous_id``, which outlives any
    single session. ``converted_at`` is set once, by the first purchase.
    """

    __tablename__ = "conversion_visitors"

    id = Column(Uuid, primary_key=True, default=uuid4)
    anonymous_id = Column(String(255), unique=True, nullable=False, index=True)

    # Most recent browsing session seen for this visitor
    session_id = Column(String(255), nullable=True)

    user_email = Column(String(255), nullable=True)
    user_agent = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)
    landing_page = Column(Text, nullable=True)

    # Running counters
    total_page_views = Column(Integer, nullable=False, default=0)
    total_time_seconds = Column(Integer, nullable=False, default=0)

    converted = Column(Boolean, nullable=False, default=False)
    converted_at = Column(DateTime, nullable=True)

    first_seen_at = Column(DateTime, default=datetime.utcnow)
    last_seen_at = Column(DateTime, default=datetime.utcnow)


class ConversionEvent(Base):
    """One raw conversion beacon, duplicates included."""

    __tablename__ = "conversion_events"

    id = Column(Uuid, primary_key=True, default=uuid4)
    anonymous_id = Column(String(255), nullable=False)
    session_id = Column(String(255), nullable=True)
    event_type = Column(String(64), nullable=False)

    page_url = Column(Text, nullable=True)
    page_title = Column(Text, nullable=True)
    time_on_page_seconds = Column(Integer, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=True)

    # Client clock; created_at is ours
    occurred_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_conversion_events_visitor", "anonymous_id", "created_at"),
        Index("idx_conversion_events_type", "event_type"),
    )
