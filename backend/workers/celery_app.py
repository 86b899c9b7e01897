"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "coverwatch",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.scheduler", "workers.notifications", "workers.cascade"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.notifications.*": {"queue": "notifications"},
        "workers.cascade.*": {"queue": "compliance"},
        "workers.scheduler.*": {"queue": "notifications"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # Fans out across active organizations via workers.scheduler.dispatch_active_organizations.
    beat_schedule={
        "compliance-notifications-daily": {
            "task": "workers.scheduler.dispatch_active_organizations",
            "schedule": crontab(hour=8, minute=0),
            "kwargs": {"task_name": "workers.notifications.run_daily_notifications"},
            "options": {"queue": "notifications"},
        },
    },
)
