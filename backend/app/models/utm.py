"""
UTM attribution model: one acquisition-channel row per visitor session.
"""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, Uuid

from app.db.postgres import Base

DEFAULT_UTM_SOURCE = "direct"
DEFAULT_UTM_MEDIUM = "none"


class UTMSession(Base):
    """Last-touch UTM attribution for a session."""

    __tablename__ = "utm_sessions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    session_id = Column(
        String(255),
        ForeignKey("user_sessions.session_id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )

    # UTM fields (source/medium are never null)
    utm_source = Column(String(255), nullable=False, default=DEFAULT_UTM_SOURCE)
    utm_medium = Column(String(255), nullable=False, default=DEFAULT_UTM_MEDIUM)
    utm_campaign = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)
    utm_term = Column(String(255), nullable=True)

    # Landing context
    landing_page = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)

    # Timestamps
    first_seen_at = Column(DateTime, default=datetime.utcnow)
    last_seen_at = Column(DateTime, default=datetime.utcnow)
