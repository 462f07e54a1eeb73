"""
Email engagement tracking service.

Runs the open, click and unsubscribe pipelines behind the public tracking
endpoints:

    resolve tracking id -> append raw event -> first-occurrence gate -> counters

Each pipeline runs under a deadline and inside a boundary that turns every
failure into a logged ``TrackingOutcome``; the endpoints always answer with
their fixed pixel/redirect/page regardless.

Also builds the tracking URLs and instruments outgoing HTML so the send
pipeline embeds links these endpoints understand.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Awaitable, Dict, Optional, Sequence
from urllib.parse import quote, urlencode
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.errors import NotFound, StoreWriteFailure, TelemetryError
from app.db.postgres import async_session_maker, get_db
from app.models.campaign import CampaignRecipient, EventType
from app.services.aggregates import aggregate_updater
from app.services.event_store import EngagementEvent, event_store
from app.services.identity import identity_resolver
from app.utils.request_meta import classify_device

logger = logging.getLogger(__name__)


@dataclass
class TrackingOutcome:
    """What happened inside a tracking pipeline. Never changes the response shape."""

    status: str  # recorded, not_found, failed, timeout
    reason: Optional[str] = None
    first_occurrence: bool = False
    event_id: Optional[UUID] = None

    @property
    def recipient_found(self) -> bool:
        return self.status != "not_found"


class TrackingService:
    """Open/click/unsubscribe pipelines and tracking link generation."""

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    async def _resolve(self, tracking_id: Optional[str]) -> CampaignRecipient:
        async with async_session_maker() as session:
            return await identity_resolver.resolve_recipient(session, tracking_id)

    async def _append(self, event: EngagementEvent) -> Optional[UUID]:
        """Append to the raw log. Failures are logged and swallowed."""
        try:
            return await event_store.record(event)
        except TelemetryError as exc:
            logger.error(
                "Failed to record %s event for recipient %s: %s",
                event.event_type,
                event.recipient_id,
                exc,
            )
            return None

    async def _gate(self, recipient: CampaignRecipient, event_types: Sequence[str]) -> bool:
        """Apply first-occurrence transitions in one transaction.

        Returns True if the last event type in ``event_types`` was a first
        occurrence.
        """
        first = False
        try:
            async with get_db() as session:
                for event_type in event_types:
                    if await event_store.has_prior_event(session, recipient, event_type):
                        first = False
                        continue
                    first = await aggregate_updater.on_first_occurrence(session, recipient, event_type)
        except SQLAlchemyError as exc:
            raise StoreWriteFailure(f"first-occurrence update failed: {exc}") from exc
        return first

    async def _run(self, kind: str, tracking_id: Optional[str], pipeline: Awaitable[TrackingOutcome]) -> TrackingOutcome:
        """Deadline and failure boundary around one pipeline."""
        try:
            return await asyncio.wait_for(pipeline, timeout=settings.tracking_deadline_seconds)
        except NotFound as exc:
            logger.info("[%s] no recipient for tracking id %r (%s)", kind, tracking_id, exc.reason)
            return TrackingOutcome(status="not_found", reason=exc.reason)
        except asyncio.TimeoutError:
            logger.warning("[%s] deadline exceeded for tracking id %s", kind, tracking_id)
            return TrackingOutcome(status="timeout", reason="deadline_exceeded")
        except TelemetryError as exc:
            logger.error("[%s] pipeline failed for tracking id %s: %s", kind, tracking_id, exc)
            return TrackingOutcome(status="failed", reason=exc.reason)
        except Exception as exc:
            logger.exception("[%s] unexpected error for tracking id %s: %s", kind, tracking_id, exc)
            return TrackingOutcome(status="failed", reason="internal_error")

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def _open(self, tracking_id, user_agent, ip_address) -> TrackingOutcome:
        recipient = await self._resolve(tracking_id)
        event_id = await self._append(
            EngagementEvent.for_recipient(
                recipient,
                EventType.OPEN.value,
                user_agent=user_agent,
                ip_address=ip_address,
                device_type=classify_device(user_agent),
            )
        )
        first = await self._gate(recipient, [EventType.OPEN.value])
        return TrackingOutcome(status="recorded", first_occurrence=first, event_id=event_id)

    async def _click(self, tracking_id, url, user_agent, ip_address) -> TrackingOutcome:
        recipient = await self._resolve(tracking_id)
        event_id = await self._append(
            EngagementEvent.for_recipient(
                recipient,
                EventType.CLICK.value,
                link_url=url,
                user_agent=user_agent,
                ip_address=ip_address,
                device_type=classify_device(user_agent),
            )
        )
        # A click proves the email was opened even if the pixel never loaded
        first = await self._gate(recipient, [EventType.OPEN.value, EventType.CLICK.value])
        return TrackingOutcome(status="recorded", first_occurrence=first, event_id=event_id)

    async def _unsubscribe(self, tracking_id, user_agent, ip_address) -> TrackingOutcome:
        recipient = await self._resolve(tracking_id)
        event_id = await self._append(
            EngagementEvent.for_recipient(
                recipient,
                EventType.UNSUBSCRIBE.value,
                user_agent=user_agent,
                ip_address=ip_address,
                device_type=classify_device(user_agent),
            )
        )
        try:
            async with get_db() as session:
                first = await aggregate_updater.on_unsubscribe(session, recipient)
        except SQLAlchemyError as exc:
            raise StoreWriteFailure(f"unsubscribe update failed: {exc}") from exc
        logger.info("Unsubscribe processed for %s (first=%s)", recipient.email, first)
        return TrackingOutcome(status="recorded", first_occurrence=first, event_id=event_id)

    async def record_open(
        self,
        tracking_id: Optional[str],
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> TrackingOutcome:
        """Record an email open (pixel load)."""
        return await self._run("open", tracking_id, self._open(tracking_id, user_agent, ip_address))

    async def record_click(
        self,
        tracking_id: Optional[str],
        url: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> TrackingOutcome:
        """Record a link click. Also counts the open if the pixel never loaded."""
        return await self._run("click", tracking_id, self._click(tracking_id, url, user_agent, ip_address))

    async def handle_unsubscribe(
        self,
        tracking_id: Optional[str],
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> TrackingOutcome:
        """Withdraw marketing consent for the recipient's audience user."""
        return await self._run("unsubscribe", tracking_id, self._unsubscribe(tracking_id, user_agent, ip_address))

    # ------------------------------------------------------------------
    # Tracking links
    # ------------------------------------------------------------------

    @staticmethod
    def generate_tracking_id() -> str:
        """Unguessable URL-safe token for a new campaign recipient."""
        return secrets.token_urlsafe(24)

    def tracking_urls(self, tracking_id: str, base_url: Optional[str] = None) -> Dict[str, str]:
        """Build the pixel, click and unsubscribe URLs for a recipient.

        ``click_base_url`` still needs ``&url=<encoded target>`` appended.
        """
        base = (base_url or settings.tracking_base_url).rstrip("/")
        query = urlencode({"t": tracking_id})
        return {
            "pixel_url": f"{base}/open?{query}",
            "click_base_url": f"{base}/click?{query}",
            "unsubscribe_url": f"{base}/unsubscribe?{query}",
        }

    def list_unsubscribe_headers(self, tracking_id: str) -> Dict[str, str]:
        """RFC 8058 one-click unsubscribe headers for an outgoing message."""
        urls = self.tracking_urls(tracking_id)
        return {
            "List-Unsubscribe": f"<{urls['unsubscribe_url']}>",
            "List-Unsubscribe-Post": "List-Unsubscribe=One-Click",
        }

    def instrument_html(self, html_body: str, tracking_id: str) -> str:
        """Add the open pixel and route every link through the click/unsubscribe endpoints.

        Skips mailto:, tel:, javascript: and template placeholder links.
        Links that already point at an unsubscribe page, or are bare ``#``,
        become the tracked unsubscribe link.
        """
        urls = self.tracking_urls(tracking_id)

        href_pattern = re.compile(r'(<a\s[^>]*href=["\'])([^"\']+)(["\'])', re.IGNORECASE)

        def _wrap_link(match: re.Match) -> str:
            prefix, url, quote_char = match.group(1), match.group(2), match.group(3)
            lower_url = url.lower()

            if any(lower_url.startswith(skip) for skip in ("mailto:", "tel:", "javascript:")):
                return match.group(0)
            if "{{" in url or "}}" in url:
                return match.group(0)
            if url == "#" or "unsubscribe" in lower_url:
                return f"{prefix}{urls['unsubscribe_url']}{quote_char}"

            tracked = f"{urls['click_base_url']}&url={quote(url, safe='')}"
            return f"{prefix}{tracked}{quote_char}"

        html = href_pattern.sub(_wrap_link, html_body)

        pixel = (
            f'<img src="{urls["pixel_url"]}" width="1" height="1" '
            f'style="display:none;" alt="" />'
        )
        if re.search(r"</body>", html, re.IGNORECASE):
            return re.sub(r"</body>", lambda _: f"{pixel}</body>", html, count=1, flags=re.IGNORECASE)
        return f"{html}{pixel}"


# Singleton instance
tracking_service = TrackingService()
