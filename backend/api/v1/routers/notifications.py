"""
Notifications Router — on-demand notification cycle for the caller's organization.

The scheduled run (workers.notifications) does the same work daily; running
it again is safe because every send is deduplicated through email_log.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_email_sender, get_organization_id
from notifications.escalator import run_notification_cycle

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.post("/run")
async def run_notifications(
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
    send=Depends(get_email_sender),
):
    summary = await run_notification_cycle(db, organization_id, send=send)
    return {"organization_id": str(organization_id), **summary}
