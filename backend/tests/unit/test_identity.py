"""
Tests for session and recipient identity resolution.
"""

import pytest

from app.core.errors import NotFound, ValidationError
from app.db.postgres import get_db
from app.models import UserSession
from app.services.identity import identity_resolver, normalize_session_id, normalize_tracking_id


class TestNormalization:

    def test_session_id_is_trimmed(self):
        assert normalize_session_id("  abc-123 ") == "abc-123"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_session_id_required(self, value):
        with pytest.raises(ValidationError) as exc_info:
            normalize_session_id(value)
        assert exc_info.value.reason == "session_id_required"

    def test_session_id_too_long(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_session_id("s" * 256)
        assert exc_info.value.reason == "session_id_invalid"

    def test_tracking_id_missing(self):
        with pytest.raises(NotFound) as exc_info:
            normalize_tracking_id(None)
        assert exc_info.value.reason == "tracking_id_missing"

    @pytest.mark.parametrize("value", ["has space", "quote'", "<script>", "t" * 300])
    def test_tracking_id_malformed(self, value):
        with pytest.raises(NotFound) as exc_info:
            normalize_tracking_id(value)
        assert exc_info.value.reason == "tracking_id_malformed"


class TestIdentityResolver:
    """Test cases for IdentityResolver against the test database."""

    @pytest.mark.asyncio
    async def test_creates_session_once(self, db, fetch):
        async with get_db() as session:
            first, created = await identity_resolver.resolve_or_create(
                session, "sess-1", user_agent="UA/1", ip_address="198.51.100.1"
            )
        async with get_db() as session:
            second, created_again = await identity_resolver.resolve_or_create(
                session, "sess-1", user_agent="UA/2"
            )

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert second.page_views == 1
        assert second.total_seconds == 0
        # An existing session is never mutated by resolution
        assert second.user_agent == "UA/1"

    @pytest.mark.asyncio
    async def test_rejects_blank_session_id(self, db):
        async with get_db() as session:
            with pytest.raises(ValidationError):
                await identity_resolver.resolve_or_create(session, "  ")

    @pytest.mark.asyncio
    async def test_resolve_recipient(self, seed_recipient):
        recipient = await seed_recipient(tracking_id="known-token")

        async with get_db() as session:
            found = await identity_resolver.resolve_recipient(session, " known-token ")

        assert found.id == recipient.id
        assert found.campaign_id == recipient.campaign_id

    @pytest.mark.asyncio
    async def test_unknown_recipient(self, db):
        async with get_db() as session:
            with pytest.raises(NotFound) as exc_info:
                await identity_resolver.resolve_recipient(session, "never-issued")
        assert exc_info.value.reason == "unknown_tracking_id"
