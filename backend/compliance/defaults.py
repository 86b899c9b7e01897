"""
System default requirement templates.

Shared by every organization (organization_id NULL, is_system_default) and
immutable; organizations duplicate one to customize it.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import CoverageRequirement, RequirementTemplate

logger = structlog.get_logger()


def _req(coverage_type, limit_type, minimum_limit=None, **flags):
    return {"coverage_type": coverage_type, "limit_type": limit_type, "minimum_limit": minimum_limit, **flags}


_WAIVER = {"requires_waiver_of_subrogation": True}
_AI = {"requires_additional_insured": True}

SYSTEM_TEMPLATES = [
    {
        "name": "Standard Vendor",
        "description": "General contractors, maintenance, janitorial, landscaping",
        "category": "vendor",
        "risk_level": "standard",
        "requirements": [
            _req("general_liability", "per_occurrence", 1_000_000, **_AI),
            _req("general_liability", "aggregate", 2_000_000),
            _req("automobile_liability", "combined_single_limit", 1_000_000),
            _req("workers_compensation", "statutory", **_WAIVER),
            _req("employers_liability", "per_accident", 500_000),
        ],
    },
    {
        "name": "High-Risk Vendor",
        "description": "Roofing, electrical, elevator, demolition",
        "category": "vendor",
        "risk_level": "high_risk",
        "requirements": [
            _req("general_liability", "per_occurrence", 2_000_000, **_AI, **_WAIVER),
            _req("general_liability", "aggregate", 4_000_000),
            _req("automobile_liability", "combined_single_limit", 1_000_000, **_AI),
            _req("workers_compensation", "statutory", **_WAIVER),
            _req("employers_liability", "per_accident", 1_000_000),
            _req("umbrella_excess_liability", "per_occurrence", 5_000_000),
        ],
    },
    {
        "name": "Office Tenant",
        "description": "Standard office, professional services, coworking",
        "category": "tenant",
        "risk_level": "standard",
        "requirements": [
            _req("general_liability", "per_occurrence", 1_000_000, **_AI, **_WAIVER),
            _req("general_liability", "aggregate", 2_000_000),
            _req("workers_compensation", "statutory"),
            _req("employers_liability", "per_accident", 500_000),
            _req("property_inland_marine", "per_occurrence"),
        ],
    },
    {
        "name": "Retail Tenant",
        "description": "Retail stores, shops, showrooms, salons",
        "category": "tenant",
        "risk_level": "standard",
        "requirements": [
            _req("general_liability", "per_occurrence", 1_000_000, **_AI, **_WAIVER),
            _req("general_liability", "aggregate", 2_000_000),
            _req("automobile_liability", "combined_single_limit", 1_000_000),
            _req("workers_compensation", "statutory"),
            _req("employers_liability", "per_accident", 500_000),
            _req("umbrella_excess_liability", "per_occurrence", 2_000_000),
            _req("property_inland_marine", "per_occurrence"),
        ],
    },
    {
        "name": "Restaurant Tenant",
        "description": "Restaurants, bars, cafes, breweries",
        "category": "tenant",
        "risk_level": "restaurant",
        "requirements": [
            _req("general_liability", "per_occurrence", 1_000_000, **_AI, **_WAIVER),
            _req("general_liability", "aggregate", 2_000_000),
            _req("automobile_liability", "combined_single_limit", 1_000_000),
            _req("workers_compensation", "statutory"),
            _req("employers_liability", "per_accident", 1_000_000),
            _req("umbrella_excess_liability", "per_occurrence", 2_000_000),
            _req("liquor_liability", "per_occurrence", 1_000_000),
            _req("property_inland_marine", "per_occurrence"),
        ],
    },
]


async def ensure_system_templates(db: AsyncSession) -> int:
    """Insert missing system defaults (matched by name). Returns how many were created."""
    existing = set(
        (
            await db.execute(
                select(RequirementTemplate.name).where(RequirementTemplate.is_system_default.is_(True))
            )
        ).scalars().all()
    )

    created = 0
    for definition in SYSTEM_TEMPLATES:
        if definition["name"] in existing:
            continue
        template = RequirementTemplate(
            organization_id=None,
            name=definition["name"],
            description=definition["description"],
            category=definition["category"],
            risk_level=definition["risk_level"],
            is_system_default=True,
        )
        db.add(template)
        await db.flush()
        db.add_all(
            CoverageRequirement(template_id=template.template_id, position=position, **req)
            for position, req in enumerate(definition["requirements"])
        )
        created += 1

    await db.commit()
    logger.info("defaults.system_templates_seeded", created=created, existing=len(existing))
    return created
