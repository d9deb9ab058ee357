from celery import Celery

from app.config import settings

celery_app = Celery(
    "dormitricity",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.workers.tasks"],
)

celery_app.conf.update(
    # Serialisation
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Reliability
    task_track_started=True,
    task_acks_late=True,       # Ack only after task completes (prevents message loss on crash)
    worker_prefetch_multiplier=1,
    # Result expiry — keep results for 24 hours
    result_expires=86400,
    # Periodic work — run `celery -A app.workers.celery_app beat` alongside the worker
    beat_schedule={
        "schedule-crawl": {
            "task": "dormitricity.schedule_crawl",
            "schedule": settings.schedule_interval_sec,
        },
        "refresh-discharge-rates": {
            "task": "dormitricity.refresh_discharge_rates",
            "schedule": settings.estimator_refresh_interval_sec,
        },
    },
)
