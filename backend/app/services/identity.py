"""
Identity resolution for sessions and campaign recipients.

Sessions are keyed by a client-generated ``session_id`` and created on first
sight with a single ``INSERT ... ON CONFLICT DO NOTHING``. Resolution never
mutates an existing session; activity updates belong to the caller.

Recipients are keyed by the opaque ``tracking_id`` embedded in outbound
email links and are only ever looked up.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound, ValidationError
from app.db.postgres import dialect_insert
from app.models.campaign import CampaignRecipient
from app.models.session import UserSession

logger = logging.getLogger(__name__)

MAX_IDENTIFIER_LENGTH = 255

_TRACKING_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


def normalize_session_id(session_id: Optional[str]) -> str:
    """Trim and validate a client-supplied session id."""
    value = session_id.strip() if isinstance(session_id, str) else ""
    if not value:
        raise ValidationError("session_id is required", reason="session_id_required")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError("session_id is too long", reason="session_id_invalid")
    return value


def normalize_tracking_id(tracking_id: Optional[str]) -> str:
    """Trim and validate a tracking id. Malformed tokens are reported as NotFound."""
    value = tracking_id.strip() if isinstance(tracking_id, str) else ""
    if not value:
        raise NotFound("tracking id missing", reason="tracking_id_missing")
    if len(value) > MAX_IDENTIFIER_LENGTH or not _TRACKING_ID_PATTERN.match(value):
        raise NotFound("tracking id malformed", reason="tracking_id_malformed")
    return value


class IdentityResolver:
    """Resolve caller-supplied identifiers to stored records."""

    async def resolve_or_create(
        self,
        session: AsyncSession,
        session_id: str,
        user_agent: Optional[str] = None,
        user_id: Optional[UUID] = None,
        ip_address: Optional[str] = None,
    ) -> Tuple[UserSession, bool]:
        """Return the session for ``session_id``, inserting it if absent.

        Parameters
        ----------
        session : AsyncSession
            Active database session. The caller commits.
        session_id : str
            Client-generated session identifier.
        user_agent, user_id, ip_address
            Only used when the row is created.

        Returns
        -------
        tuple[UserSession, bool]
            The stored session and whether this call created it.
        """
        session_id = normalize_session_id(session_id)
        now = datetime.utcnow()

        stmt = (
            dialect_insert(session, UserSession.__table__)
            .values(
                session_id=session_id,
                user_id=user_id,
                user_agent=user_agent,
                ip_address=ip_address,
                page_views=1,
                total_seconds=0,
                started_at=now,
                last_active_at=now,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["session_id"])
        )
        result = await session.execute(stmt)
        created = result.rowcount == 1

        found = await session.execute(
            select(UserSession)
            .where(UserSession.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        user_session = found.scalar_one()

        if created:
            logger.info("Session created: %s", session_id)
        return user_session, created

    async def resolve_recipient(
        self,
        session: AsyncSession,
        tracking_id: Optional[str],
    ) -> CampaignRecipient:
        """Look up a campaign recipient by tracking id.

        Raises
        ------
        NotFound
            When the token is missing, malformed, or unknown.
        """
        tracking_id = normalize_tracking_id(tracking_id)

        result = await session.execute(
            select(CampaignRecipient).where(CampaignRecipient.tracking_id == tracking_id)
        )
        recipient = result.scalar_one_or_none()
        if recipient is None:
            raise NotFound(f"unknown tracking id {tracking_id}", reason="unknown_tracking_id")
        return recipient


# Singleton instance
identity_resolver = IdentityResolver()
