"""
Certificate lifecycle.

    processing ──▶ extracted ──▶ review_confirmed
         │             │
         └──▶ failed ◀─┘

Transitions are forward-only; failed and review_confirmed are terminal.
Only a review_confirmed certificate ever becomes an entity's current
certificate, so an extraction failure leaves the entity status untouched.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance.activity import log_activity
from compliance.cascade import EntityEvaluation, evaluate_entity
from compliance.expiration import earliest_expiration
from compliance.names import all_names_listed
from core.errors import InvalidTransitionError, NotFoundError
from db.models import Certificate, Entity, ExtractedCoverage, Property
from integrations.extraction import ExtractionOutcome

logger = structlog.get_logger()

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "processing": {"extracted", "failed"},
    "extracted": {"review_confirmed", "failed"},
    "review_confirmed": set(),
    "failed": set(),
}


def transition(certificate: Certificate, target: str) -> None:
    current = certificate.processing_status
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Certificate cannot move from {current} to {target}")
    certificate.processing_status = target


async def get_certificate(db: AsyncSession, certificate_id, organization_id=None) -> Certificate:
    query = select(Certificate).where(Certificate.certificate_id == certificate_id)
    if organization_id is not None:
        query = query.join(Entity, Entity.entity_id == Certificate.entity_id).where(
            Entity.organization_id == organization_id
        )
    certificate = (await db.execute(query)).scalar_one_or_none()
    if certificate is None:
        raise NotFoundError("Certificate not found")
    return certificate


async def create_certificate(
    db: AsyncSession,
    entity: Entity,
    *,
    file_name: str | None = None,
    uploaded_by: str = "manager",
) -> Certificate:
    certificate = Certificate(
        entity_id=entity.entity_id,
        file_name=file_name,
        uploaded_by=uploaded_by,
        processing_status="processing",
    )
    db.add(certificate)
    await db.flush()
    return certificate


async def apply_extraction(db: AsyncSession, certificate: Certificate, outcome: ExtractionOutcome) -> Certificate:
    """Persist extraction output (or the failure) and advance the certificate."""
    entity = await db.get(Entity, certificate.entity_id)

    if not outcome.success:
        transition(certificate, "failed")
        certificate.failure_reason = outcome.error or "Extraction failed"
        log_activity(
            db,
            organization_id=entity.organization_id,
            entity_id=entity.entity_id,
            activity_type="certificate_failed",
            description=f"Certificate processing failed: {certificate.failure_reason}",
            metadata={"certificate_id": str(certificate.certificate_id)},
        )
        await db.commit()
        logger.warning(
            "certificate.extraction_failed",
            certificate_id=str(certificate.certificate_id),
            reason=certificate.failure_reason,
        )
        return certificate

    transition(certificate, "extracted")

    # Property-level AI entities decide the flag when the extractor only listed names
    derived_ai: bool | None = None
    if outcome.additional_insured_names:
        prop = await db.get(Property, entity.property_id)
        required_names = list(prop.additional_insured_entities or []) if prop else []
        if required_names:
            derived_ai = all_names_listed(required_names, outcome.additional_insured_names)

    rows = []
    for coverage in outcome.coverages:
        ai_flag = coverage.additional_insured_listed
        if ai_flag is None:
            ai_flag = derived_ai
        rows.append(
            ExtractedCoverage(
                certificate_id=certificate.certificate_id,
                coverage_type=coverage.coverage_type,
                limit_type=coverage.limit_type,
                limit_amount=coverage.limit_amount,
                additional_insured_listed=ai_flag,
                waiver_of_subrogation=coverage.waiver_of_subrogation,
                expiration_date=coverage.expiration_date,
                policy_number=coverage.policy_number,
                carrier=coverage.carrier,
            )
        )
    db.add_all(rows)

    certificate.insured_name = outcome.insured_name
    certificate.certificate_holder_name = outcome.certificate_holder_name
    certificate.earliest_expiration = earliest_expiration(row.expiration_date for row in rows)
    await db.commit()

    logger.info(
        "certificate.extracted",
        certificate_id=str(certificate.certificate_id),
        coverages=len(rows),
        earliest_expiration=str(certificate.earliest_expiration),
    )
    return certificate


async def fail_certificate(db: AsyncSession, certificate: Certificate, reason: str) -> Certificate:
    return await apply_extraction(db, certificate, ExtractionOutcome.failed(reason))


async def confirm_certificate(
    db: AsyncSession,
    certificate: Certificate,
    *,
    confirmed_by: str | None = None,
    today=None,
) -> EntityEvaluation:
    """Mark the review done and evaluate the entity against its template."""
    transition(certificate, "review_confirmed")
    certificate.confirmed_at = datetime.utcnow()

    entity = await db.get(Entity, certificate.entity_id)
    log_activity(
        db,
        organization_id=entity.organization_id,
        entity_id=entity.entity_id,
        activity_type="certificate_confirmed",
        description=f"Certificate {certificate.file_name or certificate.certificate_id} confirmed",
        metadata={"certificate_id": str(certificate.certificate_id)},
        created_by=confirmed_by,
    )
    await db.flush()

    evaluation = await evaluate_entity(db, entity, today=today, reason="certificate_confirmed")
    await db.commit()

    logger.info(
        "certificate.confirmed",
        certificate_id=str(certificate.certificate_id),
        entity_id=str(entity.entity_id),
        compliance_status=evaluation.compliance_status,
    )
    return evaluation
