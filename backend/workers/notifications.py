"""
Notifications Worker — daily expiration + follow-up cycle per organization.

Schedule: crontab(hour=8, minute=0) via workers.scheduler fan-out
Queue: notifications
"""

import asyncio
from datetime import datetime, timezone

import structlog

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.notifications.run_daily_notifications",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def run_daily_notifications(self, organization_id: str):
    """
    Run one notification cycle for the organization.

    Per-entity failures are counted inside the cycle; only whole-run
    failures (database unreachable, etc.) trigger a retry, which resends
    nothing because every send is deduplicated through email_log.
    """
    run_id = self.request.id or "manual"
    logger.info("notifications.started", organization_id=organization_id, run_id=run_id)

    async def _run():
        from core.config import get_settings
        from db.session import task_session
        from notifications.escalator import run_notification_cycle

        async with task_session(get_settings().database_url) as db:
            return await run_notification_cycle(db, organization_id)

    try:
        counts = asyncio.run(_run())
    except Exception as exc:
        logger.error("notifications.failed", organization_id=organization_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    summary = {
        "status": "success",
        "organization_id": organization_id,
        "run_id": run_id,
        **counts,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("notifications.completed", **summary)
    return summary
