"""Celery task bodies run eagerly against a file-backed SQLite database."""

import asyncio
import uuid
from datetime import date, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.session import Base
from workers.cascade import recalculate_template_task
from workers.notifications import run_daily_notifications

ORGANIZATION_ID = "00000000-0000-0000-0000-000000000201"


@pytest.fixture
def worker_db(tmp_path, monkeypatch):
    """Seed one organization with a vendor whose certificate expires in five days."""
    from db.models import (
        Certificate,
        CoverageRequirement,
        Entity,
        ExtractedCoverage,
        Organization,
        Property,
        RequirementTemplate,
    )

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'workers.db'}"
    ids = {"template_id": uuid.uuid4(), "entity_id": uuid.uuid4()}

    async def _seed() -> None:
        engine = create_async_engine(db_url, echo=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as db:
            prop = Property(organization_id=ORGANIZATION_ID, name="Lakeside Commons")
            db.add_all(
                [
                    Organization(organization_id=ORGANIZATION_ID, name="Lakeside Properties", status="active"),
                    prop,
                    RequirementTemplate(
                        template_id=ids["template_id"],
                        organization_id=ORGANIZATION_ID,
                        name="Vendor Standard",
                        category="vendor",
                    ),
                ]
            )
            await db.flush()
            db.add_all(
                [
                    CoverageRequirement(
                        template_id=ids["template_id"],
                        coverage_type="general_liability",
                        limit_type="per_occurrence",
                        minimum_limit=1_000_000,
                    ),
                    Entity(
                        entity_id=ids["entity_id"],
                        organization_id=ORGANIZATION_ID,
                        property_id=prop.property_id,
                        template_id=ids["template_id"],
                        entity_type="vendor",
                        name="Bayside Electric",
                        email="coi@bayside.com",
                    ),
                ]
            )
            await db.flush()
            certificate = Certificate(
                entity_id=ids["entity_id"],
                processing_status="review_confirmed",
                earliest_expiration=date.today() + timedelta(days=5),
            )
            db.add(certificate)
            await db.flush()
            db.add(
                ExtractedCoverage(
                    certificate_id=certificate.certificate_id,
                    coverage_type="general_liability",
                    limit_type="per_occurrence",
                    limit_amount=2_000_000,
                    expiration_date=certificate.earliest_expiration,
                )
            )
            await db.commit()
        await engine.dispose()

    asyncio.run(_seed())
    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))
    return {"db_url": db_url, **ids}


def _email_kinds(db_url: str) -> list[str]:
    from db.models import EmailLogEntry

    async def _query():
        engine = create_async_engine(db_url, echo=False)
        try:
            async with engine.connect() as conn:
                return list((await conn.execute(select(EmailLogEntry.kind))).scalars().all())
        finally:
            await engine.dispose()

    return asyncio.run(_query())


def test_daily_notifications_task(worker_db):
    result = run_daily_notifications.run(organization_id=ORGANIZATION_ID)

    assert result["status"] == "success"
    assert result["expiring_7"] == 1
    assert result["errors"] == 0
    assert _email_kinds(worker_db["db_url"]) == ["expiring_7"]

    again = run_daily_notifications.run(organization_id=ORGANIZATION_ID)
    assert again["expiring_7"] == 0
    assert _email_kinds(worker_db["db_url"]) == ["expiring_7"]


def test_recalculate_template_task(worker_db):
    result = recalculate_template_task.run(template_id=str(worker_db["template_id"]))

    assert result["status"] == "success"
    assert result["entities_total"] == 1
    assert result["entities_updated"] == 1
    assert result["entities_failed"] == 0
