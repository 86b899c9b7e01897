"""Organization fan-out for Celery beat: one task per active organization."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workers.celery_app import celery_app

logger = structlog.get_logger()

DEFAULT_ACTIVE_STATUSES = ("active", "trial")


async def active_organization_ids(db: AsyncSession, statuses: tuple[str, ...]) -> list[str]:
    from db.models import Organization

    result = await db.execute(
        select(Organization.organization_id)
        .where(Organization.status.in_(statuses))
        .order_by(Organization.created_at)
    )
    return [str(organization_id) for organization_id in result.scalars().all()]


@celery_app.task(
    name="workers.scheduler.dispatch_active_organizations",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def dispatch_active_organizations(
    self,
    task_name: str,
    task_kwargs: dict | None = None,
    statuses: list[str] | None = None,
):
    """
    Send `task_name` once per organization in `statuses`, adding its
    organization_id to `task_kwargs`. Only tasks under workers.* are accepted.
    """
    if not task_name.startswith("workers."):
        logger.warning("scheduler.rejected_task", task_name=task_name)
        return {"status": "failed", "reason": "invalid_task_name", "task_name": task_name}

    from core.config import get_settings
    from db.session import task_session

    selected = tuple(statuses or DEFAULT_ACTIVE_STATUSES)

    async def _load() -> list[str]:
        async with task_session(get_settings().database_url) as db:
            return await active_organization_ids(db, selected)

    try:
        organization_ids = asyncio.run(_load())
    except Exception as exc:  # noqa: BLE001
        logger.error("scheduler.dispatch_failed", task_name=task_name, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    for organization_id in organization_ids:
        celery_app.send_task(task_name, kwargs={**(task_kwargs or {}), "organization_id": organization_id})

    summary = {
        "status": "success",
        "task_name": task_name,
        "organization_count": len(organization_ids),
        "dispatched_count": len(organization_ids),
        "statuses": list(selected),
        "triggered_at": datetime.now(timezone.utc).isoformat(),
        "run_id": self.request.id or "manual",
    }
    logger.info("scheduler.dispatch_complete", **summary)
    return summary
