"""
Notification Deduplicator & Escalator

Runs once per organization per day (see workers/notifications.py).

Expiration pass — for every tracked entity with a current certificate:
  1. Refresh the surfaced compliance_status from the expiration bucket
  2. If the bucket is due (expired / due_7 / due_30), send the matching
     one-shot email unless one was already logged for this certificate

Follow-up pass — chains start at a non_compliant or expired email:
  1. Take the latest chain entry per entity (non_compliant, expired, follow_up)
  2. Eligible when follow_up_count < max_follow_ups and the interval elapsed
  3. Re-check the entity's status; a cured entity ends the chain silently
  4. Otherwise send follow_up (count + 1); at the maximum, also escalate to
     the property manager once (manual_intervention)

The email_log table is the only dedup state. Each entity is processed under
a row lock on its entities row and committed on its own, so overlapping runs
cannot double-send and one failing entity never aborts the run.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timedelta

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance.activity import log_activity
from compliance.aggregator import is_out_of_compliance, surface_status
from compliance.cascade import current_certificate, record_status
from compliance.expiration import BUCKET_NOTIFICATION_KIND, classify, days_until
from compliance.matcher import RequirementResult
from core.config import get_settings
from db.models import (
    Certificate,
    ComplianceResult,
    CoverageRequirement,
    EmailLogEntry,
    Entity,
    Property,
    User,
)
from notifications import templates
from notifications.email import SendResult, send_email

logger = structlog.get_logger()

Sender = Callable[[str, str, str], Awaitable[SendResult]]

CHAIN_KINDS = ("non_compliant", "expired", "follow_up")


def _empty_summary() -> dict[str, int]:
    return {
        "expiring_30": 0,
        "expiring_7": 0,
        "expired": 0,
        "follow_up": 0,
        "manual_intervention": 0,
        "chains_resolved": 0,
        "statuses_refreshed": 0,
        "skipped_paused": 0,
        "skipped_no_recipient": 0,
        "failed_deliveries": 0,
        "errors": 0,
    }


def _requirement_status(requirements_met: bool | None) -> str | None:
    if requirements_met is None:
        return None
    return "compliant" if requirements_met else "non_compliant"


def _label(value: str) -> str:
    return value.replace("_", " ").title()


# ──────────────────────────────────────────────────────────────────────────
# Queries
# ──────────────────────────────────────────────────────────────────────────


async def _lock_entity(db: AsyncSession, entity_id) -> Entity | None:
    """Fresh, row-locked entity (SELECT ... FOR UPDATE)."""
    result = await db.execute(
        select(Entity)
        .where(Entity.entity_id == entity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def already_sent(db: AsyncSession, entity_id, kind: str, certificate_id) -> bool:
    """
    A log entry of this kind exists for the certificate (or a legacy entry with none).

    One-shot kinds are keyed per certificate, not just per entity, so a
    renewed certificate that later nears expiry gets its own expiration
    notices. The cost is that a corrected re-upload with the same expiry
    date sends the notice a second time.
    """
    result = await db.execute(
        select(EmailLogEntry.log_id)
        .where(
            EmailLogEntry.entity_id == entity_id,
            EmailLogEntry.kind == kind,
            or_(EmailLogEntry.certificate_id == certificate_id, EmailLogEntry.certificate_id.is_(None)),
        )
        .limit(1)
    )
    return result.first() is not None


async def latest_chain_entry(db: AsyncSession, entity_id) -> EmailLogEntry | None:
    result = await db.execute(
        select(EmailLogEntry)
        .where(EmailLogEntry.entity_id == entity_id, EmailLogEntry.kind.in_(CHAIN_KINDS))
        .order_by(EmailLogEntry.sent_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _chain_heads(db: AsyncSession, organization_id) -> list[tuple]:
    """(entity_id, follow_up_count, sent_at) of the latest chain entry per entity.

    The latest entry is picked before any eligibility filter; filtering first
    would resurrect an older entry once the newest one hit the maximum.
    """
    result = await db.execute(
        select(EmailLogEntry.entity_id, EmailLogEntry.follow_up_count, EmailLogEntry.sent_at)
        .where(EmailLogEntry.organization_id == organization_id, EmailLogEntry.kind.in_(CHAIN_KINDS))
        .order_by(EmailLogEntry.entity_id, EmailLogEntry.sent_at.desc())
    )
    heads: dict = {}
    for entity_id, follow_up_count, sent_at in result.all():
        heads.setdefault(entity_id, (entity_id, follow_up_count, sent_at))
    return list(heads.values())


async def gap_lines(db: AsyncSession, certificate_id) -> list[str]:
    """Human-readable gaps for a certificate's stored results."""
    if certificate_id is None:
        return []
    result = await db.execute(
        select(ComplianceResult, CoverageRequirement)
        .join(CoverageRequirement, CoverageRequirement.requirement_id == ComplianceResult.requirement_id)
        .where(
            ComplianceResult.certificate_id == certificate_id,
            ComplianceResult.status.in_(("not_met", "missing")),
            CoverageRequirement.is_required.is_(True),
        )
        .order_by(CoverageRequirement.position)
    )
    lines = []
    for row, requirement in result.all():
        label = f"{_label(requirement.coverage_type)} ({_label(requirement.limit_type)})"
        if row.status == "missing":
            lines.append(f"{label}: coverage not found")
        else:
            lines.append(f"{label}: {row.gap_description}")
    return lines


def _eligible(follow_up_count: int, sent_at: datetime, now: datetime) -> bool:
    settings = get_settings()
    if follow_up_count >= settings.max_follow_ups:
        return False
    return sent_at <= now - timedelta(days=settings.follow_up_interval_days)


# ──────────────────────────────────────────────────────────────────────────
# Delivery + logging
# ──────────────────────────────────────────────────────────────────────────


async def _deliver(
    db: AsyncSession,
    send: Sender,
    entity: Entity,
    *,
    kind: str,
    recipient: str,
    email: templates.RenderedEmail,
    certificate_id=None,
    follow_up_count: int = 0,
    sent_at: datetime | None = None,
    summary: dict[str, int] | None = None,
) -> EmailLogEntry:
    """Send, then append the attempt to email_log whatever the outcome."""
    result = await send(recipient, email.subject, email.html)
    entry = EmailLogEntry(
        organization_id=entity.organization_id,
        entity_id=entity.entity_id,
        certificate_id=certificate_id,
        kind=kind,
        follow_up_count=follow_up_count,
        recipient_email=recipient,
        subject=email.subject,
        delivery_status="sent" if result.success else "failed",
        error_message=result.error,
        sent_at=sent_at or datetime.utcnow(),
    )
    db.add(entry)
    log_activity(
        db,
        organization_id=entity.organization_id,
        entity_id=entity.entity_id,
        activity_type="email_sent",
        description=f"{_label(kind)} email sent to {recipient}",
        metadata={"kind": kind, "follow_up_count": follow_up_count, "delivery_status": entry.delivery_status},
    )

    if summary is not None:
        summary[kind] += 1
        if not result.success:
            summary["failed_deliveries"] += 1
    logger.info(
        "notifications.sent",
        entity_id=str(entity.entity_id),
        kind=kind,
        follow_up_count=follow_up_count,
        delivery_status=entry.delivery_status,
    )
    return entry


async def _property_name(db: AsyncSession, entity: Entity) -> str:
    prop = await db.get(Property, entity.property_id)
    return prop.name if prop else "your property"


async def _manager_email(db: AsyncSession, entity: Entity) -> str | None:
    result = await db.execute(
        select(User.email)
        .join(Property, Property.manager_id == User.user_id)
        .where(Property.property_id == entity.property_id)
    )
    return result.scalar_one_or_none()


# ──────────────────────────────────────────────────────────────────────────
# Per-entity passes
# ──────────────────────────────────────────────────────────────────────────


def _refresh_status(db: AsyncSession, entity: Entity, certificate: Certificate | None, now: datetime) -> str:
    if certificate is None:
        status = "pending"
    else:
        bucket = classify(certificate.earliest_expiration, now)
        status = surface_status(_requirement_status(entity.requirements_met), bucket)
    if status != entity.compliance_status:
        record_status(db, entity, status, entity.requirements_met, "scheduled_refresh")
    return status


async def _expiration_pass(
    db: AsyncSession, entity_id, now: datetime, send: Sender, summary: dict[str, int], paused: set
) -> None:
    entity = await _lock_entity(db, entity_id)
    if entity is None or entity.deleted_at is not None or entity.template_id is None:
        return

    certificate = await current_certificate(db, entity.entity_id)
    previous = entity.compliance_status
    _refresh_status(db, entity, certificate, now)
    if entity.compliance_status != previous:
        summary["statuses_refreshed"] += 1

    if certificate is None:
        return
    if entity.notifications_paused:
        paused.add(entity.entity_id)
        return

    kind = BUCKET_NOTIFICATION_KIND.get(classify(certificate.earliest_expiration, now))
    if kind is None or await already_sent(db, entity.entity_id, kind, certificate.certificate_id):
        return
    if not entity.email:
        summary["skipped_no_recipient"] += 1
        logger.warning("notifications.no_recipient", entity_id=str(entity.entity_id), kind=kind)
        return

    email = templates.expiration_email(
        kind,
        entity_name=entity.name,
        property_name=await _property_name(db, entity),
        expiration=certificate.earliest_expiration,
        days_until=days_until(certificate.earliest_expiration, now),
        upload_token=entity.upload_token,
    )
    await _deliver(
        db,
        send,
        entity,
        kind=kind,
        recipient=entity.email,
        email=email,
        certificate_id=certificate.certificate_id,
        sent_at=now,
        summary=summary,
    )


async def _follow_up_pass(
    db: AsyncSession, entity_id, now: datetime, send: Sender, summary: dict[str, int], paused: set
) -> None:
    settings = get_settings()
    entity = await _lock_entity(db, entity_id)
    if entity is None or entity.deleted_at is not None or entity.template_id is None:
        return
    if entity.notifications_paused:
        paused.add(entity.entity_id)
        return

    # Re-read under the lock so a concurrent run cannot send the same step twice
    head = await latest_chain_entry(db, entity.entity_id)
    if head is None or not _eligible(head.follow_up_count, head.sent_at, now):
        return

    certificate = await current_certificate(db, entity.entity_id)
    status = _refresh_status(db, entity, certificate, now)
    if not is_out_of_compliance(status):
        summary["chains_resolved"] += 1
        logger.info("notifications.chain_resolved", entity_id=str(entity.entity_id), status=status)
        return

    recipient = entity.email or head.recipient_email
    count = head.follow_up_count + 1
    property_name = await _property_name(db, entity)
    certificate_id = certificate.certificate_id if certificate else None

    email = templates.follow_up_email(
        entity_name=entity.name,
        property_name=property_name,
        follow_up_number=count,
        max_follow_ups=settings.max_follow_ups,
        gaps=await gap_lines(db, certificate_id),
        upload_token=entity.upload_token,
    )
    await _deliver(
        db,
        send,
        entity,
        kind="follow_up",
        recipient=recipient,
        email=email,
        certificate_id=certificate_id,
        follow_up_count=count,
        sent_at=now,
        summary=summary,
    )

    if count < settings.max_follow_ups:
        return

    manager_email = await _manager_email(db, entity)
    if not manager_email:
        logger.warning("notifications.no_manager", entity_id=str(entity.entity_id), property_id=str(entity.property_id))
        return
    await _deliver(
        db,
        send,
        entity,
        kind="manual_intervention",
        recipient=manager_email,
        email=templates.manual_intervention_email(
            entity_name=entity.name,
            property_name=property_name,
            max_follow_ups=settings.max_follow_ups,
        ),
        certificate_id=certificate_id,
        follow_up_count=count,
        sent_at=now,
        summary=summary,
    )


# ──────────────────────────────────────────────────────────────────────────
# Entry points
# ──────────────────────────────────────────────────────────────────────────


async def run_notification_cycle(
    db: AsyncSession,
    organization_id,
    *,
    now: datetime | None = None,
    send: Sender | None = None,
) -> dict[str, int]:
    """One scheduled pass for one organization. Returns per-kind counts."""
    now = now or datetime.utcnow()
    send = send or send_email
    summary = _empty_summary()
    paused: set = set()

    tracked = (
        await db.execute(
            select(Entity.entity_id)
            .where(
                Entity.organization_id == organization_id,
                Entity.deleted_at.is_(None),
                Entity.template_id.is_not(None),
            )
            .order_by(Entity.created_at)
        )
    ).scalars().all()

    for entity_id in tracked:
        try:
            await _expiration_pass(db, entity_id, now, send, summary, paused)
            await db.commit()
        except Exception as exc:  # noqa: BLE001
            await db.rollback()
            summary["errors"] += 1
            logger.error("notifications.entity_failed", stage="expiration", entity_id=str(entity_id), error=str(exc))

    for entity_id, follow_up_count, sent_at in await _chain_heads(db, organization_id):
        if not _eligible(follow_up_count, sent_at, now):
            continue
        try:
            await _follow_up_pass(db, entity_id, now, send, summary, paused)
            await db.commit()
        except Exception as exc:  # noqa: BLE001
            await db.rollback()
            summary["errors"] += 1
            logger.error("notifications.entity_failed", stage="follow_up", entity_id=str(entity_id), error=str(exc))

    summary["skipped_paused"] = len(paused)
    logger.info("notifications.cycle_completed", organization_id=str(organization_id), **summary)
    return summary


async def notify_non_compliance(
    db: AsyncSession,
    entity: Entity,
    certificate: Certificate,
    results: Iterable[RequirementResult],
    *,
    send: Sender | None = None,
) -> EmailLogEntry | None:
    """Initial gap email after a confirmed review; starts a follow-up chain."""
    if not any(result.is_gap for result in results):
        return None

    locked = await _lock_entity(db, entity.entity_id)
    if locked is None or locked.notifications_paused or locked.deleted_at is not None:
        return None
    if not locked.email:
        logger.warning("notifications.no_recipient", entity_id=str(locked.entity_id), kind="non_compliant")
        return None
    if await already_sent(db, locked.entity_id, "non_compliant", certificate.certificate_id):
        return None

    email = templates.gap_email(
        entity_name=locked.name,
        property_name=await _property_name(db, locked),
        gaps=await gap_lines(db, certificate.certificate_id),
        upload_token=locked.upload_token,
    )
    entry = await _deliver(
        db,
        send or send_email,
        locked,
        kind="non_compliant",
        recipient=locked.email,
        email=email,
        certificate_id=certificate.certificate_id,
    )
    await db.commit()
    return entry
