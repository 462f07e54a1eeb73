"""
Anonymous visitor session model.
"""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text, Uuid

from app.db.postgres import Base


class UserSession(Base):
    """One anonymous browsing session, keyed by the client-generated session_id.

    Activity fields (page_views, total_seconds, last_active_at, user_id) are
    written by heartbeats; country/city only by geo enrichment.
    """

    __tablename__ = "user_sessions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    session_id = Column(String(255), unique=True, nullable=False, index=True)

    # Weak back-reference, set once the visitor authenticates
    user_id = Column(Uuid, nullable=True)

    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)

    # Activity (monotonic)
    page_views = Column(Integer, nullable=False, default=1)
    total_seconds = Column(Integer, nullable=False, default=0)

    # Set once by the first heartbeat; that beat is the view counted at creation
    first_heartbeat_at = Column(DateTime, nullable=True)

    # Geo enrichment
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)

    # Timestamps
    started_at = Column(DateTime, default=datetime.utcnow)
    last_active_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)
