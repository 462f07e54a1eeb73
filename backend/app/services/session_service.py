"""
Session activity service (heartbeats and page views).

Writes only the activity field subset of a session: page_views,
total_seconds, last_active_at, user_id. Geo and attribution fields belong to
the enrichment workers, so concurrent writers never overwrite each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, select, update

from app.db.postgres import get_db
from app.models.session import UserSession
from app.services.identity import identity_resolver

logger = logging.getLogger(__name__)


@dataclass
class SessionActivity:
    session_id: str
    created: bool
    page_views: int
    total_seconds: int


class SessionService:
    """Heartbeat handling for anonymous sessions."""

    async def heartbeat(
        self,
        session_id: str,
        user_agent: Optional[str] = None,
        page_views: int = 1,
        total_seconds: Optional[int] = None,
        user_id: Optional[UUID] = None,
        client_ip: Optional[str] = None,
    ) -> SessionActivity:
        """Record a heartbeat, creating the session on first sight.

        Parameters
        ----------
        session_id : str
            Client-generated session id.
        page_views : int
            Page views since the previous beat. A fresh session starts at 1
            and the first heartbeat is that view, whether the session was
            created here or by a UTM landing; later beats add the delta.
            Periodic timer beats send 0.
        total_seconds : int or None
            Elapsed active time reported by the client. Stored as the maximum
            ever seen, so a stale or reordered beat cannot lower it.
        user_id : UUID or None
            Authenticated user. Callers must take it from a verified identity,
            never from the beacon body.

        Raises
        ------
        ValidationError
            Missing or malformed session id.
        """
        now = datetime.utcnow()

        async with get_db() as session:
            user_session, created = await identity_resolver.resolve_or_create(
                session,
                session_id,
                user_agent=user_agent,
                user_id=user_id,
                ip_address=client_ip,
            )

            # Whichever path created the session already counted this first view
            first_beat = await session.execute(
                update(UserSession)
                .where(
                    UserSession.session_id == user_session.session_id,
                    UserSession.first_heartbeat_at.is_(None),
                )
                .values(first_heartbeat_at=now)
                .execution_options(synchronize_session=False)
            )

            values = {UserSession.last_active_at: now}
            increment = 0 if first_beat.rowcount == 1 else max(page_views, 0)
            if increment:
                values[UserSession.page_views] = func.coalesce(UserSession.page_views, 0) + increment
            if total_seconds is not None and total_seconds > 0:
                values[UserSession.total_seconds] = case(
                    (func.coalesce(UserSession.total_seconds, 0) < total_seconds, total_seconds),
                    else_=UserSession.total_seconds,
                )
            if user_id is not None:
                values[UserSession.user_id] = user_id
            if user_agent:
                values[UserSession.user_agent] = func.coalesce(UserSession.user_agent, user_agent)

            await session.execute(
                update(UserSession)
                .where(UserSession.session_id == user_session.session_id)
                .values(values)
                .execution_options(synchronize_session=False)
            )

            result = await session.execute(
                select(UserSession.page_views, UserSession.total_seconds).where(
                    UserSession.session_id == user_session.session_id
                )
            )
            current_views, current_seconds = result.one()

        logger.debug(
            "Heartbeat: session=%s created=%s page_views=%s total_seconds=%s",
            user_session.session_id,
            created,
            current_views,
            current_seconds,
        )
        return SessionActivity(
            session_id=user_session.session_id,
            created=created,
            page_views=current_views,
            total_seconds=current_seconds,
        )


# Singleton instance
session_service = SessionService()
