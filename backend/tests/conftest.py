"""
pytest configuration and fixtures for the telemetry backend tests.

Tests run against a throwaway SQLite file through aiosqlite; the upserts go
through ``dialect_insert`` so the same statements run as on PostgreSQL.
"""

import os
import tempfile
from datetime import datetime
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set environment variables before importing app modules
_TEST_DB_DIR = tempfile.mkdtemp(prefix="telemetry-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'telemetry.db')}"
os.environ["REDIS_PORT"] = "6390"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "testing"
os.environ["DEBUG"] = "false"
os.environ["FALLBACK_REDIRECT_URL"] = "https://fallback.example.com/"
os.environ["GEO_LOOKUP_URL"] = "https://geo.test/{ip}/json/"


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[None, None]:
    """Fresh schema per test."""
    from app.db.postgres import Base, engine, init_db

    await init_db()
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Pooled aiosqlite connections are bound to this test's event loop
    await engine.dispose()


@pytest.fixture(autouse=True)
def mock_redis():
    """Geo cache and health check never reach a real Redis."""
    client = MagicMock()
    client.get_json = AsyncMock(return_value=None)
    client.set_json = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.close = AsyncMock()
    with patch("app.services.geo_service.redis_client", client), \
         patch("app.api.v1.health.redis_client", client):
        yield client


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the ASGI app (lifespan not run, ``db`` builds the schema)."""
    from app.main import app

    transport = ASGITransport(app=app, client=("203.0.113.7", 51000))
    async with AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest_asyncio.fixture
async def seed_recipient(db):
    """Factory creating a campaign, audience user and recipient with a tracking id."""
    from app.db.postgres import get_db
    from app.models import AudienceUser, Campaign, CampaignRecipient

    async def _seed(
        tracking_id: str = None,
        campaign_id=None,
        audience_user_id=None,
        is_marketing_allowed=True,
    ) -> CampaignRecipient:
        tracking_id = tracking_id or f"trk-{uuid4().hex}"
        async with get_db() as session:
            if campaign_id is None:
                campaign = Campaign(id=uuid4(), name="Spring Launch", status="sent", sent_count=1)
                session.add(campaign)
                campaign_id = campaign.id
            if audience_user_id is None:
                user = AudienceUser(
                    id=uuid4(),
                    email=f"{uuid4().hex[:8]}@example.com",
                    first_name="Ada",
                    is_marketing_allowed=is_marketing_allowed,
                )
                session.add(user)
                audience_user_id = user.id
            await session.flush()
            recipient = CampaignRecipient(
                id=uuid4(),
                campaign_id=campaign_id,
                audience_user_id=audience_user_id,
                email="ada@example.com",
                tracking_id=tracking_id,
                sent_at=datetime.utcnow(),
            )
            session.add(recipient)
        return recipient

    return _seed


@pytest_asyncio.fixture
async def fetch(db):
    """Load a fresh copy of a row by primary key."""
    from app.db.postgres import async_session_maker

    async def _fetch(model, pk):
        async with async_session_maker() as session:
            return await session.get(model, pk)

    return _fetch


@pytest_asyncio.fixture
async def count_events(db):
    """Count campaign_events rows, optionally per event type."""
    from sqlalchemy import func, select

    from app.db.postgres import async_session_maker
    from app.models import CampaignEvent

    async def _count(event_type: str = None, recipient_id=None) -> int:
        stmt = select(func.count(CampaignEvent.id))
        if event_type:
            stmt = stmt.where(CampaignEvent.event_type == event_type)
        if recipient_id:
            stmt = stmt.where(CampaignEvent.recipient_id == recipient_id)
        async with async_session_maker() as session:
            return (await session.execute(stmt)).scalar_one()

    return _count
