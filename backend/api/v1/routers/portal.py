"""
Portal Router — self-service certificate upload for vendors and tenants.

Every notification email links to /upload/{upload_token}. The token alone
identifies the entity, so these endpoints take no bearer credentials and
only ever touch that one entity.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_extraction_client
from api.v1.routers.certificates import CertificateResponse, serialize_certificate
from compliance.certificates import apply_extraction, create_certificate
from core.errors import NotFoundError
from db.models import Entity, Property

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/portal", tags=["portal"])


class PortalEntityResponse(BaseModel):
    entity_id: UUID
    entity_type: str
    name: str
    property_name: str
    compliance_status: str


async def entity_for_token(db: AsyncSession, token: str) -> Entity:
    """Resolve an active entity by its upload token."""
    entity = (
        await db.execute(select(Entity).where(Entity.upload_token == token, Entity.deleted_at.is_(None)))
    ).scalar_one_or_none()
    if entity is None:
        raise NotFoundError("This upload link is no longer active.")
    return entity


@router.get("/{token}", response_model=PortalEntityResponse)
async def portal_entity(token: str, db: AsyncSession = Depends(get_db)):
    entity = await entity_for_token(db, token)
    prop = await db.get(Property, entity.property_id)
    return PortalEntityResponse(
        entity_id=entity.entity_id,
        entity_type=entity.entity_type,
        name=entity.name,
        property_name=prop.name if prop else "",
        compliance_status=entity.compliance_status,
    )


@router.post("/{token}/certificates", response_model=CertificateResponse, status_code=201)
async def portal_upload(
    token: str,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    extraction_client=Depends(get_extraction_client),
):
    """Store a self-service upload and extract it; a manager confirms the review."""
    entity = await entity_for_token(db, token)
    certificate = await create_certificate(db, entity, file_name=file.filename, uploaded_by="self_service")
    await db.commit()

    content = await file.read()
    outcome = await extraction_client.extract(content, file_name=file.filename)
    certificate = await apply_extraction(db, certificate, outcome)
    logger.info(
        "portal.certificate_uploaded",
        entity_id=str(entity.entity_id),
        certificate_id=str(certificate.certificate_id),
        processing_status=certificate.processing_status,
    )
    return await serialize_certificate(db, certificate)
