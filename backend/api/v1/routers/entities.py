"""
Entities Router — vendors and tenants tracked for insurance compliance.
"""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db, get_organization_id
from compliance.activity import log_activity
from compliance.cascade import current_certificate, evaluate_entity
from compliance.names import name_matches
from compliance.templates import get_template
from core.errors import NotFoundError
from db.models import ActivityLog, ComplianceResult, CoverageRequirement, EmailLogEntry, Entity, ExtractedCoverage, Property

router = APIRouter(prefix="/api/v1/entities", tags=["entities"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class EntityResponse(BaseModel):
    entity_id: UUID
    organization_id: UUID
    property_id: UUID
    template_id: UUID | None
    entity_type: str
    name: str
    email: str | None
    unit_suite: str | None
    compliance_status: str
    requirements_met: bool | None
    notifications_paused: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EntityUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    email: str | None = None
    unit_suite: str | None = None
    template_id: UUID | None = None
    notifications_paused: bool | None = None


class RequirementBreakdown(BaseModel):
    requirement_id: UUID
    coverage_type: str
    limit_type: str
    minimum_limit: int | None
    is_required: bool
    status: str
    gap_description: str | None
    found_limit: int | None = None


class ComplianceBreakdown(BaseModel):
    entity_id: UUID
    compliance_status: str
    requirements_met: bool | None
    certificate_id: UUID | None = None
    earliest_expiration: date | None = None
    insured_name_matches: bool | None = None
    holder_matches: bool | None = None
    results: list[RequirementBreakdown] = Field(default_factory=list)


class EmailLogResponse(BaseModel):
    log_id: UUID
    certificate_id: UUID | None
    kind: str
    follow_up_count: int
    recipient_email: str
    subject: str | None
    delivery_status: str
    error_message: str | None
    sent_at: datetime

    model_config = {"from_attributes": True}


class ActivityResponse(BaseModel):
    activity_id: UUID
    activity_type: str
    description: str
    activity_metadata: dict | None = None
    created_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Helpers ────────────────────────────────────────────────────────────────


async def load_entity(db: AsyncSession, entity_id: UUID, organization_id: UUID) -> Entity:
    result = await db.execute(
        select(Entity).where(
            Entity.entity_id == entity_id,
            Entity.organization_id == organization_id,
            Entity.deleted_at.is_(None),
        )
    )
    entity = result.scalar_one_or_none()
    if entity is None:
        raise NotFoundError("Entity not found")
    return entity


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[EntityResponse])
async def list_entities(
    entity_type: Literal["vendor", "tenant"] | None = None,
    status: str | None = None,
    property_id: UUID | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    query = select(Entity).where(Entity.organization_id == organization_id, Entity.deleted_at.is_(None))
    if entity_type:
        query = query.where(Entity.entity_type == entity_type)
    if status:
        query = query.where(Entity.compliance_status == status)
    if property_id:
        query = query.where(Entity.property_id == property_id)
    result = await db.execute(query.order_by(Entity.name).offset(skip).limit(limit))
    return result.scalars().all()


@router.get("/{entity_id}", response_model=EntityResponse)
async def get_entity(
    entity_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    return await load_entity(db, entity_id, organization_id)


@router.patch("/{entity_id}", response_model=EntityResponse)
async def update_entity(
    entity_id: UUID,
    update: EntityUpdate,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
    user: dict = Depends(get_current_user),
):
    """Update contact details, pause notifications, or (re)assign the template."""
    entity = await load_entity(db, entity_id, organization_id)
    fields = update.model_dump(exclude_unset=True)

    for name in ("name", "email", "unit_suite", "notifications_paused"):
        if name in fields and fields[name] is not None:
            setattr(entity, name, fields[name])

    if "template_id" in fields and fields["template_id"] != entity.template_id:
        if fields["template_id"] is not None:
            await get_template(db, fields["template_id"], organization_id)
        entity.template_id = fields["template_id"]
        log_activity(
            db,
            organization_id=organization_id,
            entity_id=entity.entity_id,
            activity_type="template_updated",
            description="Requirement template reassigned",
            metadata={"template_id": str(entity.template_id) if entity.template_id else None},
            created_by=user.get("email"),
        )
        await db.flush()
        await evaluate_entity(db, entity, reason="template_assigned")

    await db.commit()
    await db.refresh(entity)
    return entity


@router.get("/{entity_id}/compliance", response_model=ComplianceBreakdown)
async def get_compliance(
    entity_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    """Per-requirement breakdown of the entity's current certificate."""
    entity = await load_entity(db, entity_id, organization_id)
    breakdown = ComplianceBreakdown(
        entity_id=entity.entity_id,
        compliance_status=entity.compliance_status,
        requirements_met=entity.requirements_met,
    )
    certificate = await current_certificate(db, entity.entity_id)
    if certificate is None:
        return breakdown

    prop = await db.get(Property, entity.property_id)
    breakdown.certificate_id = certificate.certificate_id
    breakdown.earliest_expiration = certificate.earliest_expiration
    breakdown.insured_name_matches = name_matches(entity.name, certificate.insured_name)
    if prop is not None and prop.certificate_holder_name:
        breakdown.holder_matches = name_matches(prop.certificate_holder_name, certificate.certificate_holder_name)

    rows = await db.execute(
        select(ComplianceResult, CoverageRequirement, ExtractedCoverage.limit_amount)
        .join(CoverageRequirement, CoverageRequirement.requirement_id == ComplianceResult.requirement_id)
        .outerjoin(ExtractedCoverage, ExtractedCoverage.coverage_id == ComplianceResult.extracted_coverage_id)
        .where(ComplianceResult.certificate_id == certificate.certificate_id)
        .order_by(CoverageRequirement.position)
    )
    breakdown.results = [
        RequirementBreakdown(
            requirement_id=requirement.requirement_id,
            coverage_type=requirement.coverage_type,
            limit_type=requirement.limit_type,
            minimum_limit=requirement.minimum_limit,
            is_required=requirement.is_required,
            status=result.status,
            gap_description=result.gap_description,
            found_limit=found_limit,
        )
        for result, requirement, found_limit in rows.all()
    ]
    return breakdown


@router.get("/{entity_id}/email-log", response_model=list[EmailLogResponse])
async def get_email_log(
    entity_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    entity = await load_entity(db, entity_id, organization_id)
    result = await db.execute(
        select(EmailLogEntry).where(EmailLogEntry.entity_id == entity.entity_id).order_by(EmailLogEntry.sent_at.desc())
    )
    return result.scalars().all()


@router.get("/{entity_id}/activity", response_model=list[ActivityResponse])
async def get_activity(
    entity_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    entity = await load_entity(db, entity_id, organization_id)
    result = await db.execute(
        select(ActivityLog)
        .where(ActivityLog.entity_id == entity.entity_id)
        .order_by(ActivityLog.created_at.desc())
        .limit(limit)
    )
    return result.scalars().all()
