"""
API tests for the public email tracking endpoints.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from app.api.v1.tracking import TRACKING_PIXEL
from app.models import AudienceUser, Campaign, CampaignEvent, CampaignRecipient
from app.services.tracking_service import TrackingOutcome


class TestOpenPixel:
    """Test cases for GET /api/v1/track/open."""

    @pytest.mark.asyncio
    async def test_returns_uncacheable_pixel(self, client, seed_recipient):
        recipient = await seed_recipient()

        response = await client.get("/api/v1/track/open", params={"t": recipient.tracking_id})

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/gif"
        assert response.content == TRACKING_PIXEL
        assert len(response.content) == 43
        assert "no-store" in response.headers["cache-control"]
        assert response.headers["pragma"] == "no-cache"
        assert response.headers["expires"] == "0"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "?t=", "?t=unknown-token", "?t=%3Cscript%3E"])
    async def test_pixel_for_bad_tokens(self, client, count_events, query):
        response = await client.get(f"/api/v1/track/open{query}")

        assert response.status_code == 200
        assert response.content == TRACKING_PIXEL
        assert await count_events() == 0

    @pytest.mark.asyncio
    async def test_pixel_when_pipeline_times_out(self, client, seed_recipient):
        recipient = await seed_recipient()
        with patch(
            "app.api.v1.tracking.tracking_service.record_open",
            AsyncMock(return_value=TrackingOutcome(status="timeout", reason="deadline_exceeded")),
        ):
            response = await client.get("/api/v1/track/open", params={"t": recipient.tracking_id})

        assert response.status_code == 200
        assert response.content == TRACKING_PIXEL

    @pytest.mark.asyncio
    async def test_concurrent_opens_count_once(self, client, seed_recipient, fetch, count_events):
        recipient = await seed_recipient()

        responses = await asyncio.gather(*[
            client.get("/api/v1/track/open", params={"t": recipient.tracking_id}) for _ in range(8)
        ])

        assert all(r.status_code == 200 for r in responses)
        assert (await fetch(Campaign, recipient.campaign_id)).open_count == 1
        assert (await fetch(AudienceUser, recipient.audience_user_id)).total_opens == 1
        assert await count_events("open", recipient.id) == 8

    @pytest.mark.asyncio
    async def test_device_and_ip_recorded(self, client, seed_recipient):
        from sqlalchemy import select
        from app.db.postgres import async_session_maker

        recipient = await seed_recipient()
        await client.get(
            "/api/v1/track/open",
            params={"t": recipient.tracking_id},
            headers={
                "User-Agent": "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) Mobile/15E148",
                "X-Forwarded-For": "198.51.100.23, 10.0.0.1",
            },
        )

        async with async_session_maker() as session:
            event = (await session.execute(select(CampaignEvent))).scalar_one()
        assert event.device_type == "tablet"
        assert event.ip_address == "198.51.100.23"


class TestClickRedirect:
    """Test cases for GET /api/v1/track/click."""

    @pytest.mark.asyncio
    async def test_redirects_and_records(self, client, seed_recipient, fetch):
        recipient = await seed_recipient()

        response = await client.get(
            "/api/v1/track/click",
            params={"t": recipient.tracking_id, "url": "https://example.com/offer?x=1"},
        )

        assert response.status_code == 302
        assert response.headers["location"] == "https://example.com/offer?x=1"
        assert response.headers["cache-control"] == "no-store"
        assert (await fetch(CampaignRecipient, recipient.id)).status == "clicked"

    @pytest.mark.asyncio
    async def test_open_then_click(self, client, seed_recipient, fetch):
        recipient = await seed_recipient()

        await client.get("/api/v1/track/open", params={"t": recipient.tracking_id})
        await client.get("/api/v1/track/click", params={"t": recipient.tracking_id, "url": "https://example.com"})

        stored = await fetch(CampaignRecipient, recipient.id)
        campaign = await fetch(Campaign, recipient.campaign_id)
        assert stored.status == "clicked"
        assert campaign.open_count == 1
        assert campaign.click_count == 1

    @pytest.mark.asyncio
    async def test_double_encoded_target(self, client, seed_recipient):
        recipient = await seed_recipient()

        response = await client.get(
            f"/api/v1/track/click?t={recipient.tracking_id}&url=https%253A%252F%252Fexample.com%252Fpage"
        )

        assert response.status_code == 302
        assert response.headers["location"] == "https://example.com/page"

    @pytest.mark.asyncio
    async def test_missing_url_uses_fallback(self, client, seed_recipient):
        recipient = await seed_recipient()

        response = await client.get("/api/v1/track/click", params={"t": recipient.tracking_id})

        assert response.status_code == 302
        assert response.headers["location"] == "https://fallback.example.com/"

    @pytest.mark.asyncio
    async def test_unsafe_scheme_uses_fallback(self, client, seed_recipient):
        recipient = await seed_recipient()

        response = await client.get(
            "/api/v1/track/click",
            params={"t": recipient.tracking_id, "url": "javascript:alert(1)"},
        )

        assert response.headers["location"] == "https://fallback.example.com/"

    @pytest.mark.asyncio
    async def test_unknown_token_still_redirects(self, client, count_events):
        response = await client.get(
            "/api/v1/track/click",
            params={"t": "unknown-token", "url": "https://example.com/offer"},
        )

        assert response.status_code == 302
        assert response.headers["location"] == "https://example.com/offer"
        assert await count_events() == 0


class TestUnsubscribe:
    """Test cases for GET/POST /api/v1/track/unsubscribe."""

    @pytest.mark.asyncio
    async def test_unsubscribe_success_page(self, client, seed_recipient, fetch):
        recipient = await seed_recipient()

        response = await client.get("/api/v1/track/unsubscribe", params={"t": recipient.tracking_id})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "Unsubscribed Successfully" in response.text
        user = await fetch(AudienceUser, recipient.audience_user_id)
        assert user.is_marketing_allowed is False
        assert user.unsubscribed_at is not None

    @pytest.mark.asyncio
    async def test_repeat_unsubscribe_counts_once(self, client, seed_recipient, fetch, count_events):
        recipient = await seed_recipient()

        first = await client.get("/api/v1/track/unsubscribe", params={"t": recipient.tracking_id})
        second = await client.get("/api/v1/track/unsubscribe", params={"t": recipient.tracking_id})

        assert "Unsubscribed Successfully" in first.text
        assert "Unsubscribed Successfully" in second.text
        assert (await fetch(Campaign, recipient.campaign_id)).unsubscribe_count == 1
        assert await count_events("unsubscribe", recipient.id) == 2

    @pytest.mark.asyncio
    async def test_one_click_post(self, client, seed_recipient, fetch):
        recipient = await seed_recipient()

        response = await client.post(
            f"/api/v1/track/unsubscribe?t={recipient.tracking_id}",
            content="List-Unsubscribe=One-Click",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        assert response.status_code == 200
        assert "Unsubscribed Successfully" in response.text
        assert (await fetch(AudienceUser, recipient.audience_user_id)).is_marketing_allowed is False

    @pytest.mark.asyncio
    async def test_unknown_token_failure_page(self, client, seed_recipient, fetch, count_events):
        bystander = await seed_recipient()

        response = await client.get("/api/v1/track/unsubscribe", params={"t": "unknown-token"})

        assert response.status_code == 200
        assert "Invalid Link" in response.text
        assert await count_events() == 0
        assert (await fetch(AudienceUser, bystander.audience_user_id)).is_marketing_allowed is True

    @pytest.mark.asyncio
    async def test_store_failure_page(self, client, seed_recipient):
        recipient = await seed_recipient()
        with patch(
            "app.api.v1.tracking.tracking_service.handle_unsubscribe",
            AsyncMock(return_value=TrackingOutcome(status="failed", reason="db_write_failed")),
        ):
            response = await client.get("/api/v1/track/unsubscribe", params={"t": recipient.tracking_id})

        assert response.status_code == 200
        assert "Something Went Wrong" in response.text
