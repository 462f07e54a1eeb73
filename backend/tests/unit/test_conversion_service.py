"""
Tests for conversion telemetry: visitor counters, purchase gate and event log.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from app.core.errors import ValidationError
from app.db.postgres import async_session_maker
from app.models import ConversionEvent, ConversionVisitor
from app.services.conversion_service import conversion_service


async def _visitor(anonymous_id):
    async with async_session_maker() as session:
        result = await session.execute(
            select(ConversionVisitor).where(ConversionVisitor.anonymous_id == anonymous_id)
        )
        return result.scalar_one()


async def _events(anonymous_id):
    async with async_session_maker() as session:
        result = await session.execute(
            select(ConversionEvent)
            .where(ConversionEvent.anonymous_id == anonymous_id)
            .order_by(ConversionEvent.created_at)
        )
        return result.scalars().all()


class TestConversionService:
    """Test cases for ConversionService.track."""

    @pytest.mark.asyncio
    async def test_first_event_creates_visitor(self, db):
        result = await conversion_service.track(
            "anon-1",
            "page_viewed",
            session_id="sess-1",
            page_url="https://shop.example.com/",
            referrer="https://google.com/",
            time_on_page_seconds=12,
        )

        assert result.success is True
        assert result.first_conversion is False

        visitor = await _visitor("anon-1")
        assert visitor.total_page_views == 1
        assert visitor.total_time_seconds == 12
        assert visitor.landing_page == "https://shop.example.com/"
        assert visitor.referrer == "https://google.com/"
        assert visitor.converted is False
        assert visitor.converted_at is None

    @pytest.mark.asyncio
    async def test_counters_accumulate(self, db):
        await conversion_service.track("anon-2", "page_viewed", page_url="https://shop.example.com/")
        await conversion_service.track("anon-2", "page_viewed", time_on_page_seconds=30)
        await conversion_service.track("anon-2", "add_to_cart", time_on_page_seconds=5)

        visitor = await _visitor("anon-2")
        assert visitor.total_page_views == 2
        assert visitor.total_time_seconds == 35
        # Landing page is the first page seen
        assert visitor.landing_page == "https://shop.example.com/"

    @pytest.mark.asyncio
    async def test_only_first_purchase_converts(self, db):
        first = await conversion_service.track("anon-3", "purchase_completed", metadata={"order_id": "A1"})
        converted_at = (await _visitor("anon-3")).converted_at
        second = await conversion_service.track("anon-3", "purchase_completed", metadata={"order_id": "A2"})

        assert first.first_conversion is True
        assert second.first_conversion is False

        visitor = await _visitor("anon-3")
        assert visitor.converted is True
        assert visitor.converted_at == converted_at
        assert sorted(e.event_metadata["order_id"] for e in await _events("anon-3")) == ["A1", "A2"]

    @pytest.mark.asyncio
    async def test_every_beacon_is_logged(self, db):
        sent_at = datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        await conversion_service.track("anon-4", "page_viewed", page_title="Home", occurred_at=sent_at)
        await conversion_service.track("anon-4", "page_viewed", page_title="Home", occurred_at=sent_at)

        events = await _events("anon-4")
        assert len(events) == 2
        assert events[0].page_title == "Home"
        assert events[0].occurred_at == datetime(2026, 3, 1, 10, 0)

    @pytest.mark.asyncio
    async def test_email_and_session_follow_latest(self, db):
        await conversion_service.track("anon-5", "page_viewed", session_id="sess-a")
        await conversion_service.track("anon-5", "checkout_started", session_id="sess-b", user_email="ada@example.com")
        await conversion_service.track("anon-5", "page_viewed")

        visitor = await _visitor("anon-5")
        assert visitor.session_id == "sess-b"
        assert visitor.user_email == "ada@example.com"

    @pytest.mark.asyncio
    async def test_time_on_page_is_capped(self, db):
        await conversion_service.track("anon-6", "page_viewed", time_on_page_seconds=10 ** 9)

        assert (await _visitor("anon-6")).total_time_seconds == 86400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("anonymous_id", ["", "   ", None])
    async def test_missing_anonymous_id(self, db, anonymous_id):
        with pytest.raises(ValidationError) as excinfo:
            await conversion_service.track(anonymous_id, "page_viewed")

        assert excinfo.value.reason == "anonymous_id_required"
        async with async_session_maker() as session:
            assert (await session.execute(select(func.count(ConversionEvent.id)))).scalar_one() == 0
