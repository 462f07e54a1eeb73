"""
Aggregate counter updater.

Campaign and audience-user counters are derived values, bumped exactly once
per recipient per event type. The gate is a single conditional UPDATE
("set the terminal timestamp only if it is still NULL"); the statement's
rowcount decides whether this request owns the first occurrence. Two
concurrent duplicates can both read "not yet set", but only one of them can
change the row, so only one increments.

Counters are always incremented in SQL (``col = col + 1``), never
read-modify-write in Python.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError
from app.models.campaign import (
    STATUS_RANK,
    AudienceUser,
    Campaign,
    CampaignRecipient,
    EventType,
    RecipientStatus,
)

logger = logging.getLogger(__name__)

# event_type -> (recipient timestamp, status it implies, campaign counter, audience counter)
_FIRST_OCCURRENCE = {
    EventType.OPEN.value: (
        CampaignRecipient.opened_at,
        RecipientStatus.OPENED.value,
        Campaign.open_count,
        AudienceUser.total_opens,
    ),
    EventType.CLICK.value: (
        CampaignRecipient.clicked_at,
        RecipientStatus.CLICKED.value,
        Campaign.click_count,
        AudienceUser.total_clicks,
    ),
}


def _advance_status(target: str):
    """SQL expression moving status forward to ``target`` but never backwards."""
    current_rank = case(STATUS_RANK, value=CampaignRecipient.status, else_=0)
    return case(
        (current_rank >= STATUS_RANK[target], CampaignRecipient.status),
        else_=target,
    )


class AggregateCounterUpdater:
    """First-occurrence gated counter maintenance."""

    async def on_first_occurrence(
        self,
        session: AsyncSession,
        recipient: CampaignRecipient,
        event_type: str,
    ) -> bool:
        """Apply the first-occurrence transition for an open or click.

        The transition and the counter increments run in the caller's
        transaction and commit (or roll back) together.

        Returns
        -------
        bool
            True if this call won the transition and incremented counters.
        """
        if event_type not in _FIRST_OCCURRENCE:
            raise ValidationError(f"no first-occurrence gate for {event_type!r}", reason="invalid_event_type")

        timestamp_col, status, campaign_counter, audience_counter = _FIRST_OCCURRENCE[event_type]
        now = datetime.utcnow()

        result = await session.execute(
            update(CampaignRecipient)
            .where(CampaignRecipient.id == recipient.id, timestamp_col.is_(None))
            .values({timestamp_col: now, CampaignRecipient.status: _advance_status(status)})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "Repeat %s for recipient %s, counters unchanged",
                event_type,
                recipient.id,
            )
            return False

        await session.execute(
            update(Campaign)
            .where(Campaign.id == recipient.campaign_id)
            .values({campaign_counter: func.coalesce(campaign_counter, 0) + 1})
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(AudienceUser)
            .where(AudienceUser.id == recipient.audience_user_id)
            .values({
                audience_counter: func.coalesce(audience_counter, 0) + 1,
                AudienceUser.last_engaged_at: now,
            })
            .execution_options(synchronize_session=False)
        )

        logger.info(
            "First %s for recipient %s (campaign %s)",
            event_type,
            recipient.id,
            recipient.campaign_id,
        )
        return True

    async def on_unsubscribe(
        self,
        session: AsyncSession,
        recipient: CampaignRecipient,
    ) -> bool:
        """Withdraw marketing consent and count the unsubscribe once.

        Gated on ``is_marketing_allowed`` moving from allowed (or unset) to
        false. Repeated unsubscribe hits leave the row and the counter alone.
        """
        now = datetime.utcnow()

        result = await session.execute(
            update(AudienceUser)
            .where(
                AudienceUser.id == recipient.audience_user_id,
                or_(
                    AudienceUser.is_marketing_allowed.is_(None),
                    AudienceUser.is_marketing_allowed.is_(True),
                ),
            )
            .values(is_marketing_allowed=False, unsubscribed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("Audience user %s already unsubscribed", recipient.audience_user_id)
            return False

        await session.execute(
            update(Campaign)
            .where(Campaign.id == recipient.campaign_id)
            .values(unsubscribe_count=func.coalesce(Campaign.unsubscribe_count, 0) + 1)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Audience user %s unsubscribed via campaign %s",
            recipient.audience_user_id,
            recipient.campaign_id,
        )
        return True

    async def reconcile_campaign_counters(
        self,
        session: AsyncSession,
        campaign_id: Optional[UUID] = None,
    ) -> List[Dict[str, Any]]:
        """Recompute open/click counters from recipient timestamps.

        Campaign counters become the number of recipients with
        ``opened_at``/``clicked_at`` set; audience-user counters the same
        across all of that user's recipient rows. Each table is corrected with
        one correlated UPDATE, so increments landing meanwhile are not lost.

        Returns
        -------
        list[dict]
            One entry per campaign whose counters had drifted.
        """
        opens = (
            select(func.count(CampaignRecipient.id))
            .where(
                CampaignRecipient.campaign_id == Campaign.id,
                CampaignRecipient.opened_at.is_not(None),
            )
            .scalar_subquery()
        )
        clicks = (
            select(func.count(CampaignRecipient.id))
            .where(
                CampaignRecipient.campaign_id == Campaign.id,
                CampaignRecipient.clicked_at.is_not(None),
            )
            .scalar_subquery()
        )

        drifted = or_(
            func.coalesce(Campaign.open_count, 0) != opens,
            func.coalesce(Campaign.click_count, 0) != clicks,
        )
        campaign_filter = [drifted]
        if campaign_id is not None:
            campaign_filter.append(Campaign.id == campaign_id)

        rows = await session.execute(
            select(Campaign.id, Campaign.open_count, Campaign.click_count, opens, clicks)
            .where(*campaign_filter)
        )
        corrections = [
            {
                "campaign_id": str(row[0]),
                "open_count": {"was": row[1], "now": row[3]},
                "click_count": {"was": row[2], "now": row[4]},
            }
            for row in rows.all()
        ]

        await session.execute(
            update(Campaign)
            .where(*campaign_filter)
            .values(open_count=opens, click_count=clicks)
            .execution_options(synchronize_session=False)
        )

        user_opens = (
            select(func.count(CampaignRecipient.id))
            .where(
                CampaignRecipient.audience_user_id == AudienceUser.id,
                CampaignRecipient.opened_at.is_not(None),
            )
            .scalar_subquery()
        )
        user_clicks = (
            select(func.count(CampaignRecipient.id))
            .where(
                CampaignRecipient.audience_user_id == AudienceUser.id,
                CampaignRecipient.clicked_at.is_not(None),
            )
            .scalar_subquery()
        )
        user_filter = [
            or_(
                func.coalesce(AudienceUser.total_opens, 0) != user_opens,
                func.coalesce(AudienceUser.total_clicks, 0) != user_clicks,
            )
        ]
        if campaign_id is not None:
            user_filter.append(
                AudienceUser.id.in_(
                    select(CampaignRecipient.audience_user_id).where(
                        CampaignRecipient.campaign_id == campaign_id
                    )
                )
            )
        await session.execute(
            update(AudienceUser)
            .where(*user_filter)
            .values(total_opens=user_opens, total_clicks=user_clicks)
            .execution_options(synchronize_session=False)
        )

        for correction in corrections:
            logger.warning("Counter drift corrected: %s", correction)
        return corrections


# Singleton instance
aggregate_updater = AggregateCounterUpdater()
