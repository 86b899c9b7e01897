"""
Certificates Router — upload, extraction review, and confirmation.

Upload runs extraction inline; the certificate lands in `extracted` (ready
for review) or `failed`. Confirming the review evaluates the entity and
sends the initial coverage-gap email when it is non-compliant.
"""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db, get_email_sender, get_extraction_client, get_organization_id
from api.v1.routers.entities import load_entity
from compliance.certificates import apply_extraction, confirm_certificate, create_certificate, get_certificate
from db.models import Certificate, Entity, ExtractedCoverage
from notifications.escalator import notify_non_compliance

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["certificates"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CoverageResponse(BaseModel):
    coverage_id: UUID
    coverage_type: str
    limit_type: str
    limit_amount: int | None
    additional_insured_listed: bool | None
    waiver_of_subrogation: bool | None
    expiration_date: date | None
    policy_number: str | None
    carrier: str | None

    model_config = {"from_attributes": True}


class CertificateResponse(BaseModel):
    certificate_id: UUID
    entity_id: UUID
    file_name: str | None
    uploaded_by: str
    processing_status: str
    failure_reason: str | None
    insured_name: str | None
    certificate_holder_name: str | None
    earliest_expiration: date | None
    uploaded_at: datetime
    confirmed_at: datetime | None
    coverages: list[CoverageResponse] = Field(default_factory=list)


class ConfirmResponse(BaseModel):
    certificate: CertificateResponse
    compliance_status: str
    requirements_met: bool | None
    notification_sent: bool


# ─── Helpers ────────────────────────────────────────────────────────────────


async def serialize_certificate(db: AsyncSession, certificate: Certificate) -> CertificateResponse:
    result = await db.execute(
        select(ExtractedCoverage).where(ExtractedCoverage.certificate_id == certificate.certificate_id)
    )
    return CertificateResponse(
        certificate_id=certificate.certificate_id,
        entity_id=certificate.entity_id,
        file_name=certificate.file_name,
        uploaded_by=certificate.uploaded_by,
        processing_status=certificate.processing_status,
        failure_reason=certificate.failure_reason,
        insured_name=certificate.insured_name,
        certificate_holder_name=certificate.certificate_holder_name,
        earliest_expiration=certificate.earliest_expiration,
        uploaded_at=certificate.uploaded_at,
        confirmed_at=certificate.confirmed_at,
        coverages=[CoverageResponse.model_validate(row) for row in result.scalars().all()],
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/entities/{entity_id}/certificates", response_model=CertificateResponse, status_code=201)
async def upload_certificate(
    entity_id: UUID,
    file: UploadFile = File(...),
    uploaded_by: Literal["manager", "self_service"] = Form("manager"),
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
    extraction_client=Depends(get_extraction_client),
):
    """Store the certificate and run extraction; the result awaits review."""
    entity = await load_entity(db, entity_id, organization_id)
    certificate = await create_certificate(db, entity, file_name=file.filename, uploaded_by=uploaded_by)
    await db.commit()

    content = await file.read()
    outcome = await extraction_client.extract(content, file_name=file.filename)
    certificate = await apply_extraction(db, certificate, outcome)
    return await serialize_certificate(db, certificate)


@router.get("/certificates/{certificate_id}", response_model=CertificateResponse)
async def get_certificate_detail(
    certificate_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    certificate = await get_certificate(db, certificate_id, organization_id)
    return await serialize_certificate(db, certificate)


@router.post("/certificates/{certificate_id}/confirm", response_model=ConfirmResponse)
async def confirm(
    certificate_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
    user: dict = Depends(get_current_user),
    send=Depends(get_email_sender),
):
    """Confirm the reviewed extraction and evaluate the entity."""
    certificate = await get_certificate(db, certificate_id, organization_id)
    evaluation = await confirm_certificate(db, certificate, confirmed_by=user.get("email"))

    entry = None
    if evaluation.requirements_met is False:
        entity = await db.get(Entity, certificate.entity_id)
        entry = await notify_non_compliance(db, entity, certificate, evaluation.results, send=send)

    return ConfirmResponse(
        certificate=await serialize_certificate(db, certificate),
        compliance_status=evaluation.compliance_status,
        requirements_met=evaluation.requirements_met,
        notification_sent=entry is not None,
    )
