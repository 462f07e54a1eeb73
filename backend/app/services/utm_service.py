"""
UTM attribution service.

Stores the acquisition channel of a visitor session as a single row per
session_id. Attribution is last-touch: a later report overwrites the UTM and
landing fields while ``first_seen_at`` keeps the original landing time.

Sessions may be first seen here (a UTM-tagged landing can arrive before the
first heartbeat), so the session row is created if absent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.db.postgres import dialect_insert, get_db
from app.models.utm import DEFAULT_UTM_MEDIUM, DEFAULT_UTM_SOURCE, UTMSession
from app.services.identity import identity_resolver, normalize_session_id

logger = logging.getLogger(__name__)

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")

_MAX_FIELD = 255


def _clean(value: Any, limit: Optional[int] = _MAX_FIELD) -> Optional[str]:
    """Trim a string field; empty or non-string values become None."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return None
    return value[:limit] if limit else value


def normalize_utm_fields(utm_fields: Optional[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """Clean UTM values and apply the direct/none channel defaults."""
    utm_fields = utm_fields or {}
    cleaned = {key: _clean(utm_fields.get(key)) for key in UTM_KEYS}
    cleaned["utm_source"] = cleaned["utm_source"] or DEFAULT_UTM_SOURCE
    cleaned["utm_medium"] = cleaned["utm_medium"] or DEFAULT_UTM_MEDIUM
    return cleaned


@dataclass
class AttributionResult:
    success: bool
    reason: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True}
        return {"success": False, "reason": self.reason}


class UTMService:
    """Session-level UTM attribution."""

    async def attribute(
        self,
        session_id: str,
        utm_fields: Optional[Dict[str, Any]] = None,
        landing_page: Optional[str] = None,
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
        client_ip: Optional[str] = None,
    ) -> AttributionResult:
        """Upsert the attribution row for a session.

        Parameters
        ----------
        session_id : str
            Client-generated session id.
        utm_fields : dict or None
            Any of utm_source, utm_medium, utm_campaign, utm_content, utm_term.
            Missing source/medium default to "direct"/"none".
        landing_page, referrer, user_agent : str or None
            Landing context, overwritten on every report.

        Raises
        ------
        ValidationError
            Missing or malformed session id. Store errors are reported as
            ``reason="db_write_failed"``.
        """
        session_id = normalize_session_id(session_id)
        fields = normalize_utm_fields(utm_fields)
        now = datetime.utcnow()

        record = {
            **fields,
            "landing_page": _clean(landing_page, limit=None),
            "referrer": _clean(referrer, limit=None),
            "user_agent": _clean(user_agent, limit=None),
            "last_seen_at": now,
        }

        try:
            async with get_db() as session:
                await identity_resolver.resolve_or_create(
                    session,
                    session_id,
                    user_agent=record["user_agent"],
                    ip_address=client_ip,
                )

                stmt = dialect_insert(session, UTMSession.__table__).values(
                    session_id=session_id,
                    first_seen_at=now,
                    **record,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["session_id"],
                    set_={key: stmt.excluded[key] for key in record},
                )
                await session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("UTM attribution failed for session %s: %s", session_id, exc)
            return AttributionResult(success=False, reason="db_write_failed")

        logger.info(
            "UTM attribution: session=%s source=%s medium=%s campaign=%s",
            session_id,
            fields["utm_source"],
            fields["utm_medium"],
            fields["utm_campaign"],
        )
        return AttributionResult(
            success=True,
            utm_source=fields["utm_source"],
            utm_medium=fields["utm_medium"],
        )


# Singleton instance
utm_service = UTMService()
