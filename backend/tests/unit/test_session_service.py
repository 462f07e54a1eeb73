"""
Tests for heartbeat handling.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from app.core.errors import ValidationError
from app.db.postgres import async_session_maker
from app.models import UserSession
from app.services.session_service import session_service
from app.services.utm_service import utm_service


async def _load(session_id):
    async with async_session_maker() as session:
        result = await session.execute(select(UserSession).where(UserSession.session_id == session_id))
        return result.scalar_one()


class TestSessionService:
    """Test cases for SessionService.heartbeat."""

    @pytest.mark.asyncio
    async def test_first_beat_creates_session(self, db):
        activity = await session_service.heartbeat("sess-new", user_agent="UA/1", client_ip="198.51.100.2")

        assert activity.created is True
        assert activity.page_views == 1
        assert activity.total_seconds == 0

        stored = await _load("sess-new")
        assert stored.user_agent == "UA/1"
        assert stored.ip_address == "198.51.100.2"

    @pytest.mark.asyncio
    async def test_page_views_accumulate(self, db):
        await session_service.heartbeat("sess-pv")
        second = await session_service.heartbeat("sess-pv")
        third = await session_service.heartbeat("sess-pv", page_views=3)

        assert second.created is False
        assert second.page_views == 2
        assert third.page_views == 5

    @pytest.mark.asyncio
    async def test_utm_landing_then_first_beat_counts_once(self, db):
        await utm_service.attribute("sess-landed", utm_fields={"utm_source": "google"})

        first = await session_service.heartbeat("sess-landed")
        second = await session_service.heartbeat("sess-landed")

        assert first.created is False
        assert first.page_views == 1
        assert second.page_views == 2
        assert (await _load("sess-landed")).first_heartbeat_at is not None

    @pytest.mark.asyncio
    async def test_timer_beat_does_not_count_a_view(self, db):
        await session_service.heartbeat("sess-timer")
        activity = await session_service.heartbeat("sess-timer", page_views=0, total_seconds=30)

        assert activity.page_views == 1
        assert activity.total_seconds == 30

    @pytest.mark.asyncio
    async def test_total_seconds_never_decreases(self, db):
        await session_service.heartbeat("sess-time", total_seconds=120)
        await session_service.heartbeat("sess-time", page_views=0, total_seconds=240)
        stale = await session_service.heartbeat("sess-time", page_views=0, total_seconds=60)

        assert stale.total_seconds == 240

    @pytest.mark.asyncio
    async def test_user_id_is_set_but_never_cleared(self, db):
        user_id = uuid4()
        await session_service.heartbeat("sess-user")
        await session_service.heartbeat("sess-user", user_id=user_id)
        await session_service.heartbeat("sess-user")

        assert (await _load("sess-user")).user_id == user_id

    @pytest.mark.asyncio
    async def test_geo_fields_untouched(self, db):
        from sqlalchemy import update
        from app.db.postgres import get_db

        await session_service.heartbeat("sess-geo")
        async with get_db() as session:
            await session.execute(
                update(UserSession).where(UserSession.session_id == "sess-geo").values(country="Germany", city="Berlin")
            )
        await session_service.heartbeat("sess-geo", user_agent="UA/2")

        stored = await _load("sess-geo")
        assert stored.country == "Germany"
        assert stored.city == "Berlin"

    @pytest.mark.asyncio
    async def test_blank_session_id(self, db):
        with pytest.raises(ValidationError):
            await session_service.heartbeat("   ")
