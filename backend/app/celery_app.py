from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from app.core.config import settings

celery_app = Celery(
    "beacon_telemetry",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.tasks.reconciliation",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,
    worker_prefetch_multiplier=1,
    task_default_queue="telemetry",
    task_queues=[
        Queue("telemetry", routing_key="telemetry"),
    ],
    beat_schedule={
        "reconcile-campaign-counters": {
            "task": "app.tasks.reconciliation.reconcile_campaign_counters",
            "schedule": crontab(minute=15),
            "options": {"queue": "telemetry"},
        },
    },
)


if __name__ == "__main__":
    celery_app.start()
