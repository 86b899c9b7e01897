"""
Cascade Recalculator — re-evaluates every entity bound to a requirement
template after the template's requirement set changes.

Per entity:
  1. Locate the most recently confirmed certificate
     (none → compliance_status = pending)
  2. Replace the certificate's compliance_results with a fresh evaluation
     of the template's *current* requirements (delete + insert inside one
     SAVEPOINT, so readers never observe a half-written set)
  3. Aggregate and persist requirements_met + the surfaced status

The sweep is best-effort: one entity failing (e.g. a transient datastore
error) rolls back only that entity's savepoint, is counted, and the
remaining entities are still processed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance.activity import log_activity
from compliance.aggregator import aggregate, surface_status
from compliance.expiration import classify
from compliance.matcher import RequirementResult, evaluate_all
from db.models import Certificate, ComplianceResult, CoverageRequirement, Entity, ExtractedCoverage

logger = structlog.get_logger()


@dataclass
class EntityEvaluation:
    entity_id: uuid.UUID
    certificate_id: uuid.UUID | None
    compliance_status: str
    requirements_met: bool | None
    results: list[RequirementResult] = field(default_factory=list)


@dataclass
class CascadeResult:
    template_id: uuid.UUID
    entities_total: int = 0
    entities_updated: int = 0
    entities_pending: int = 0
    entities_failed: int = 0
    failed_entity_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "template_id": str(self.template_id),
            "entities_total": self.entities_total,
            "entities_updated": self.entities_updated,
            "entities_pending": self.entities_pending,
            "entities_failed": self.entities_failed,
            "failed_entity_ids": list(self.failed_entity_ids),
        }


# ──────────────────────────────────────────────────────────────────────────
# Loaders
# ──────────────────────────────────────────────────────────────────────────


async def load_requirements(db: AsyncSession, template_id) -> list[CoverageRequirement]:
    result = await db.execute(
        select(CoverageRequirement)
        .where(CoverageRequirement.template_id == template_id)
        .order_by(CoverageRequirement.position)
    )
    return list(result.scalars().all())


async def current_certificate(db: AsyncSession, entity_id) -> Certificate | None:
    """
    Most recently confirmed certificate for the entity.

    Confirming an older upload after a newer one makes the older upload
    current; upload time only breaks ties.
    """
    result = await db.execute(
        select(Certificate)
        .where(
            Certificate.entity_id == entity_id,
            Certificate.processing_status == "review_confirmed",
        )
        .order_by(Certificate.confirmed_at.desc().nulls_last(), Certificate.uploaded_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def load_coverages(db: AsyncSession, certificate_id) -> list[ExtractedCoverage]:
    result = await db.execute(select(ExtractedCoverage).where(ExtractedCoverage.certificate_id == certificate_id))
    return list(result.scalars().all())


async def bound_entities(db: AsyncSession, template_id, organization_id=None) -> list[Entity]:
    query = select(Entity).where(Entity.template_id == template_id, Entity.deleted_at.is_(None))
    if organization_id is not None:
        query = query.where(Entity.organization_id == organization_id)
    result = await db.execute(query.order_by(Entity.created_at))
    return list(result.scalars().all())


# ──────────────────────────────────────────────────────────────────────────
# Per-entity evaluation
# ──────────────────────────────────────────────────────────────────────────


def record_status(db: AsyncSession, entity: Entity, status: str, requirements_met: bool | None, reason: str) -> None:
    previous = entity.compliance_status
    entity.compliance_status = status
    entity.requirements_met = requirements_met
    if previous != status:
        log_activity(
            db,
            organization_id=entity.organization_id,
            entity_id=entity.entity_id,
            activity_type="status_changed",
            description=f"Compliance status changed from {previous} to {status}",
            metadata={"from": previous, "to": status, "reason": reason},
        )


async def evaluate_entity(
    db: AsyncSession,
    entity: Entity,
    *,
    requirements: list[CoverageRequirement] | None = None,
    today: date | datetime | None = None,
    reason: str = "evaluation",
) -> EntityEvaluation:
    """
    Recompute one entity's compliance from its current certificate.

    Does not commit; callers wrap this in their own transaction/savepoint.
    """
    today = today or datetime.utcnow().date()

    if entity.template_id is None:
        record_status(db, entity, "pending", None, reason)
        return EntityEvaluation(entity.entity_id, None, "pending", None)

    if requirements is None:
        requirements = await load_requirements(db, entity.template_id)

    certificate = await current_certificate(db, entity.entity_id)
    if certificate is None:
        record_status(db, entity, "pending", None, reason)
        return EntityEvaluation(entity.entity_id, None, "pending", None)

    coverages = await load_coverages(db, certificate.certificate_id)
    results = evaluate_all(requirements, coverages)

    await db.execute(delete(ComplianceResult).where(ComplianceResult.certificate_id == certificate.certificate_id))
    db.add_all(
        [
            ComplianceResult(
                certificate_id=certificate.certificate_id,
                requirement_id=r.requirement_id,
                extracted_coverage_id=r.extracted_coverage_id,
                status=r.status,
                gap_description=r.gap_description,
            )
            for r in results
        ]
    )

    requirement_status = aggregate(results)
    status = surface_status(requirement_status, classify(certificate.earliest_expiration, today))
    record_status(db, entity, status, requirement_status == "compliant", reason)
    await db.flush()

    return EntityEvaluation(
        entity_id=entity.entity_id,
        certificate_id=certificate.certificate_id,
        compliance_status=status,
        requirements_met=requirement_status == "compliant",
        results=results,
    )


# ──────────────────────────────────────────────────────────────────────────
# Template cascade
# ──────────────────────────────────────────────────────────────────────────


async def recalculate_template(
    db: AsyncSession,
    template_id,
    *,
    organization_id=None,
    today: date | datetime | None = None,
) -> CascadeResult:
    """
    Re-run the matcher + aggregator for every active entity bound to the template.

    System default templates are shared, so callers acting for one
    organization pass organization_id to limit the sweep to its entities.
    """
    summary = CascadeResult(template_id=template_id)
    requirements = await load_requirements(db, template_id)
    entities = await bound_entities(db, template_id, organization_id)
    summary.entities_total = len(entities)

    for entity in entities:
        entity_id = entity.entity_id
        try:
            async with db.begin_nested():
                evaluation = await evaluate_entity(
                    db,
                    entity,
                    requirements=requirements,
                    today=today,
                    reason="template_updated",
                )
        except Exception as exc:  # noqa: BLE001
            summary.entities_failed += 1
            summary.failed_entity_ids.append(str(entity_id))
            logger.error(
                "cascade.entity_failed",
                template_id=str(template_id),
                entity_id=str(entity_id),
                error=str(exc),
            )
            continue

        if evaluation.certificate_id is None:
            summary.entities_pending += 1
        else:
            summary.entities_updated += 1

    await db.commit()
    logger.info("cascade.completed", **summary.as_dict())
    return summary
