"""
Cascade Worker — re-runs a template's compliance cascade out of band.

Used when a sweep reported failed entities, or to refresh a template's
entities after a bulk data fix. The sweep is idempotent.
"""

import asyncio

import structlog

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.cascade.recalculate_template_task",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def recalculate_template_task(self, template_id: str, organization_id: str | None = None):
    run_id = self.request.id or "manual"
    logger.info("cascade.task_started", template_id=template_id, run_id=run_id)

    async def _run():
        from compliance.cascade import recalculate_template
        from core.config import get_settings
        from db.session import task_session

        async with task_session(get_settings().database_url) as db:
            return await recalculate_template(db, template_id, organization_id=organization_id)

    try:
        result = asyncio.run(_run())
    except Exception as exc:
        logger.error("cascade.task_failed", template_id=template_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
    return {"status": "success", "run_id": run_id, **result.as_dict()}
