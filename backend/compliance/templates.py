"""
Requirement templates service.

System default templates (organization_id NULL) are visible to every
organization but immutable; organizations duplicate them to customize.
Replacing an organization template's requirement set triggers the cascade
so every bound entity is re-evaluated against the new rules.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance.activity import log_activity
from compliance.cascade import CascadeResult, load_requirements, recalculate_template
from core.errors import DuplicateRequirementError, NotFoundError, TemplateInUseError, TemplateLockedError
from db.models import CoverageRequirement, Entity, RequirementTemplate

logger = structlog.get_logger()

REQUIREMENT_FIELDS = (
    "coverage_type",
    "limit_type",
    "minimum_limit",
    "is_required",
    "requires_additional_insured",
    "requires_waiver_of_subrogation",
)


def validate_requirements(requirements: Iterable[dict[str, Any]]) -> None:
    """(coverage_type, limit_type) must be unique within one template."""
    seen: set[tuple[str, str]] = set()
    for req in requirements:
        key = (req["coverage_type"], req["limit_type"])
        if key in seen:
            raise DuplicateRequirementError(
                f"Duplicate requirement for {key[0]} / {key[1]}; each coverage and limit type may appear once"
            )
        seen.add(key)


def _build_requirements(template_id, requirements: list[dict[str, Any]]) -> list[CoverageRequirement]:
    rows = []
    for position, req in enumerate(requirements):
        values = {name: req[name] for name in REQUIREMENT_FIELDS if name in req}
        rows.append(CoverageRequirement(template_id=template_id, position=position, **values))
    return rows


async def replace_requirements(db: AsyncSession, template_id, requirements: list[dict[str, Any]]) -> None:
    """
    Sync the template's requirement rows to `requirements` without committing.

    Rows are matched on (coverage_type, limit_type) and updated in place, so
    a kept requirement keeps its id and the compliance results bound to it.
    Only requirements that disappear are deleted.
    """
    existing = {(row.coverage_type, row.limit_type): row for row in await load_requirements(db, template_id)}
    incoming = {(req["coverage_type"], req["limit_type"]) for req in requirements}

    removed = [row.requirement_id for key, row in existing.items() if key not in incoming]
    if removed:
        await db.execute(delete(CoverageRequirement).where(CoverageRequirement.requirement_id.in_(removed)))

    for position, req in enumerate(requirements):
        row = existing.get((req["coverage_type"], req["limit_type"]))
        if row is None:
            values = {name: req[name] for name in REQUIREMENT_FIELDS if name in req}
            db.add(CoverageRequirement(template_id=template_id, position=position, **values))
            continue
        row.position = position
        row.minimum_limit = req.get("minimum_limit")
        row.is_required = req.get("is_required", True)
        row.requires_additional_insured = req.get("requires_additional_insured", False)
        row.requires_waiver_of_subrogation = req.get("requires_waiver_of_subrogation", False)
    await db.flush()


async def get_template(db: AsyncSession, template_id, organization_id) -> RequirementTemplate:
    """Load a template visible to the organization (its own or a system default)."""
    result = await db.execute(
        select(RequirementTemplate).where(
            RequirementTemplate.template_id == template_id,
            or_(
                RequirementTemplate.organization_id == organization_id,
                RequirementTemplate.is_system_default.is_(True),
            ),
        )
    )
    template = result.scalar_one_or_none()
    if template is None:
        raise NotFoundError("Template not found")
    return template


async def _get_editable(db: AsyncSession, template_id, organization_id, action: str) -> RequirementTemplate:
    template = await get_template(db, template_id, organization_id)
    if template.is_system_default:
        raise TemplateLockedError(f"Cannot {action} system default templates")
    return template


async def list_templates(db: AsyncSession, organization_id, category: str | None = None) -> list[RequirementTemplate]:
    query = select(RequirementTemplate).where(
        or_(
            RequirementTemplate.organization_id == organization_id,
            RequirementTemplate.is_system_default.is_(True),
        )
    )
    if category:
        query = query.where(RequirementTemplate.category == category)
    query = query.order_by(RequirementTemplate.is_system_default.desc(), RequirementTemplate.name)
    return list((await db.execute(query)).scalars().all())


async def create_template(
    db: AsyncSession,
    organization_id,
    *,
    name: str,
    category: str,
    description: str | None = None,
    risk_level: str = "standard",
    requirements: list[dict[str, Any]] | None = None,
) -> RequirementTemplate:
    requirements = requirements or []
    validate_requirements(requirements)

    template = RequirementTemplate(
        organization_id=organization_id,
        name=name,
        description=description,
        category=category,
        risk_level=risk_level,
        is_system_default=False,
    )
    db.add(template)
    await db.flush()
    db.add_all(_build_requirements(template.template_id, requirements))
    await db.commit()

    logger.info("template.created", template_id=str(template.template_id), requirements=len(requirements))
    return template


async def update_template(
    db: AsyncSession,
    template_id,
    organization_id,
    *,
    name: str | None = None,
    description: str | None = None,
    risk_level: str | None = None,
    requirements: list[dict[str, Any]] | None = None,
    updated_by: str | None = None,
) -> tuple[RequirementTemplate, CascadeResult | None]:
    """
    Update template fields and, when given, replace its requirement set.

    A requirement change and the cascade it triggers are one transaction.
    Entities whose re-evaluation fails keep their previous results.

    Returns the template and the cascade summary (None when the
    requirement set was left alone).
    """
    template = await _get_editable(db, template_id, organization_id, "edit")

    if name is not None:
        template.name = name
    if description is not None:
        template.description = description
    if risk_level is not None:
        template.risk_level = risk_level

    if requirements is None:
        await db.commit()
        return template, None

    validate_requirements(requirements)
    await replace_requirements(db, template.template_id, requirements)

    entities = (
        await db.execute(
            select(Entity.entity_id).where(Entity.template_id == template.template_id, Entity.deleted_at.is_(None))
        )
    ).scalars().all()
    for entity_id in entities:
        log_activity(
            db,
            organization_id=organization_id,
            entity_id=entity_id,
            activity_type="template_updated",
            description=f"Requirement template '{template.name}' updated",
            metadata={"template_id": str(template.template_id), "requirements": len(requirements)},
            created_by=updated_by,
        )

    # The sweep commits once, so the new requirement set and every
    # entity's re-evaluation land together.
    logger.info("template.updated", template_id=str(template.template_id), requirements=len(requirements))
    cascade = await recalculate_template(db, template.template_id)
    return template, cascade


async def duplicate_template(db: AsyncSession, template_id, organization_id) -> RequirementTemplate:
    source = await get_template(db, template_id, organization_id)
    requirements = await load_requirements(db, source.template_id)

    copy = RequirementTemplate(
        organization_id=organization_id,
        name=f"{source.name} (Custom)",
        description=source.description,
        category=source.category,
        risk_level=source.risk_level,
        is_system_default=False,
    )
    db.add(copy)
    await db.flush()
    db.add_all(
        _build_requirements(
            copy.template_id,
            [{name: getattr(req, name) for name in REQUIREMENT_FIELDS} for req in requirements],
        )
    )
    await db.commit()

    logger.info("template.duplicated", source_id=str(source.template_id), template_id=str(copy.template_id))
    return copy


async def template_usage(db: AsyncSession, template_id, organization_id) -> dict[str, int]:
    """Count active entities (by type) and distinct properties using the template."""
    await get_template(db, template_id, organization_id)
    base = (
        Entity.template_id == template_id,
        Entity.organization_id == organization_id,
        Entity.deleted_at.is_(None),
    )
    rows = (
        await db.execute(select(Entity.entity_type, func.count()).where(*base).group_by(Entity.entity_type))
    ).all()
    by_type = {entity_type: count for entity_type, count in rows}
    properties = (await db.execute(select(func.count(func.distinct(Entity.property_id))).where(*base))).scalar_one()

    vendors = by_type.get("vendor", 0)
    tenants = by_type.get("tenant", 0)
    return {
        "vendors": vendors,
        "tenants": tenants,
        "total_entities": vendors + tenants,
        "properties": properties,
    }


async def delete_template(db: AsyncSession, template_id, organization_id) -> None:
    template = await _get_editable(db, template_id, organization_id, "delete")

    total = (
        await db.execute(
            select(func.count()).where(Entity.template_id == template.template_id, Entity.deleted_at.is_(None))
        )
    ).scalar_one()
    if total:
        noun = "entity" if total == 1 else "entities"
        raise TemplateInUseError(
            f"This template is assigned to {total} {noun}. Reassign them to another template before deleting."
        )

    await db.execute(delete(CoverageRequirement).where(CoverageRequirement.template_id == template.template_id))
    await db.delete(template)
    await db.commit()
    logger.info("template.deleted", template_id=str(template_id))
