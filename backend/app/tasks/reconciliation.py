import asyncio
import logging
from typing import Optional
from uuid import UUID

from celery import shared_task

from app.db.postgres import engine, get_db

logger = logging.getLogger(__name__)


async def _reconcile(campaign_id: Optional[str]):
    from app.services.aggregates import aggregate_updater

    try:
        async with get_db() as session:
            return await aggregate_updater.reconcile_campaign_counters(
                session, UUID(campaign_id) if campaign_id else None
            )
    finally:
        # asyncio.run gets a fresh loop per task; pooled connections belong to the old one
        await engine.dispose()


@shared_task(bind=True, queue="telemetry")
def reconcile_campaign_counters(self, campaign_id: Optional[str] = None):
    """Rebuild open/click counters from recipient timestamps."""
    corrections = asyncio.run(_reconcile(campaign_id))
    logger.info("Reconciliation finished, %d campaign(s) corrected", len(corrections))
    return {"corrected": len(corrections), "campaigns": corrections}
