"""Tests for the shared system default templates."""

import pytest
from sqlalchemy import func, select

from compliance.defaults import SYSTEM_TEMPLATES, ensure_system_templates
from compliance.templates import validate_requirements
from db.models import CoverageRequirement, RequirementTemplate


@pytest.mark.parametrize("template", SYSTEM_TEMPLATES, ids=lambda t: t["name"])
def test_requirement_pairs_are_unique(template):
    validate_requirements(template["requirements"])


async def test_seeding_is_idempotent(test_db):
    first = await ensure_system_templates(test_db)
    second = await ensure_system_templates(test_db)

    assert first == len(SYSTEM_TEMPLATES)
    assert second == 0
    templates = (
        await test_db.execute(select(RequirementTemplate).where(RequirementTemplate.is_system_default.is_(True)))
    ).scalars().all()
    assert len(templates) == len(SYSTEM_TEMPLATES)
    assert all(template.organization_id is None for template in templates)


async def test_seeded_requirements_keep_their_order(test_db):
    await ensure_system_templates(test_db)
    restaurant = (
        await test_db.execute(select(RequirementTemplate).where(RequirementTemplate.name == "Restaurant Tenant"))
    ).scalar_one()

    rows = (
        await test_db.execute(
            select(CoverageRequirement.coverage_type)
            .where(CoverageRequirement.template_id == restaurant.template_id)
            .order_by(CoverageRequirement.position)
        )
    ).scalars().all()
    count = (
        await test_db.execute(select(func.count()).select_from(CoverageRequirement))
    ).scalar_one()

    assert rows[0] == "general_liability"
    assert "liquor_liability" in rows
    assert count == sum(len(t["requirements"]) for t in SYSTEM_TEMPLATES)
