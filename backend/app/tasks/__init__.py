from app.tasks.reconciliation import reconcile_campaign_counters

__all__ = [
    "reconcile_campaign_counters",
]
