"""Entity activity history (append-only)."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ActivityLog


def log_activity(
    db: AsyncSession,
    *,
    organization_id,
    entity_id,
    activity_type: str,
    description: str,
    metadata: dict[str, Any] | None = None,
    created_by: str | None = None,
) -> ActivityLog:
    """Stage an activity row on the session; the caller owns the commit."""
    row = ActivityLog(
        organization_id=organization_id,
        entity_id=entity_id,
        activity_type=activity_type,
        description=description,
        activity_metadata=metadata or {},
        created_by=created_by,
    )
    db.add(row)
    return row
