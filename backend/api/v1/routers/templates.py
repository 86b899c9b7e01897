"""
Templates Router — requirement templates and their coverage rules.

Editing an organization template replaces its requirement set and cascades
the change to every entity bound to it; the cascade summary is returned
with the updated template.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db, get_organization_id
from compliance import templates as service
from compliance.cascade import load_requirements, recalculate_template
from db.models import COVERAGE_TYPES, LIMIT_TYPES, RequirementTemplate

router = APIRouter(prefix="/api/v1/templates", tags=["templates"])

CoverageType = Literal[COVERAGE_TYPES]
LimitType = Literal[LIMIT_TYPES]
RiskLevel = Literal["standard", "high_risk", "professional_services", "restaurant", "industrial"]


# ─── Schemas ────────────────────────────────────────────────────────────────


class RequirementIn(BaseModel):
    coverage_type: CoverageType
    limit_type: LimitType
    minimum_limit: int | None = Field(None, ge=0)
    is_required: bool = True
    requires_additional_insured: bool = False
    requires_waiver_of_subrogation: bool = False


class RequirementResponse(RequirementIn):
    requirement_id: UUID
    position: int

    model_config = {"from_attributes": True}


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    category: Literal["vendor", "tenant"]
    risk_level: RiskLevel = "standard"
    requirements: list[RequirementIn] = Field(default_factory=list)


class TemplateUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    risk_level: RiskLevel | None = None
    requirements: list[RequirementIn] | None = None


class TemplateResponse(BaseModel):
    template_id: UUID
    organization_id: UUID | None
    name: str
    description: str | None
    category: str
    risk_level: str
    is_system_default: bool
    created_at: datetime
    updated_at: datetime
    requirements: list[RequirementResponse] = Field(default_factory=list)


class CascadeSummary(BaseModel):
    template_id: UUID
    entities_total: int
    entities_updated: int
    entities_pending: int
    entities_failed: int
    failed_entity_ids: list[str]


class TemplateUpdateResponse(BaseModel):
    template: TemplateResponse
    cascade: CascadeSummary | None = None


class TemplateUsageResponse(BaseModel):
    vendors: int
    tenants: int
    total_entities: int
    properties: int


# ─── Helpers ────────────────────────────────────────────────────────────────


async def _serialize(db: AsyncSession, template: RequirementTemplate) -> TemplateResponse:
    requirements = await load_requirements(db, template.template_id)
    return TemplateResponse(
        template_id=template.template_id,
        organization_id=template.organization_id,
        name=template.name,
        description=template.description,
        category=template.category,
        risk_level=template.risk_level,
        is_system_default=template.is_system_default,
        created_at=template.created_at,
        updated_at=template.updated_at,
        requirements=[RequirementResponse.model_validate(req) for req in requirements],
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[TemplateResponse])
async def list_templates(
    category: Literal["vendor", "tenant"] | None = Query(None),
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    """List the organization's templates plus the system defaults."""
    templates = await service.list_templates(db, organization_id, category=category)
    return [await _serialize(db, template) for template in templates]


@router.post("/", response_model=TemplateResponse, status_code=201)
async def create_template(
    payload: TemplateCreate,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    template = await service.create_template(
        db,
        organization_id,
        name=payload.name,
        description=payload.description,
        category=payload.category,
        risk_level=payload.risk_level,
        requirements=[req.model_dump() for req in payload.requirements],
    )
    return await _serialize(db, template)


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    template = await service.get_template(db, template_id, organization_id)
    return await _serialize(db, template)


@router.put("/{template_id}", response_model=TemplateUpdateResponse)
async def update_template(
    template_id: UUID,
    payload: TemplateUpdate,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
    user: dict = Depends(get_current_user),
):
    """Update a template; a new requirement set re-evaluates every bound entity."""
    requirements = None if payload.requirements is None else [req.model_dump() for req in payload.requirements]
    template, cascade = await service.update_template(
        db,
        template_id,
        organization_id,
        name=payload.name,
        description=payload.description,
        risk_level=payload.risk_level,
        requirements=requirements,
        updated_by=user.get("email"),
    )
    return TemplateUpdateResponse(
        template=await _serialize(db, template),
        cascade=CascadeSummary(**cascade.as_dict()) if cascade else None,
    )


@router.delete("/{template_id}", status_code=204)
async def delete_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    await service.delete_template(db, template_id, organization_id)


@router.post("/{template_id}/duplicate", response_model=TemplateResponse, status_code=201)
async def duplicate_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    template = await service.duplicate_template(db, template_id, organization_id)
    return await _serialize(db, template)


@router.get("/{template_id}/usage", response_model=TemplateUsageResponse)
async def template_usage(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    return await service.template_usage(db, template_id, organization_id)


@router.post("/{template_id}/recalculate", response_model=CascadeSummary)
async def recalculate(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_organization_id),
):
    """Re-run the cascade synchronously (e.g. after a partially failed sweep)."""
    template = await service.get_template(db, template_id, organization_id)
    result = await recalculate_template(db, template.template_id, organization_id=organization_id)
    return CascadeSummary(**result.as_dict())
