"""
Test Configuration — Fixtures for async DB, test client, and seeded compliance data.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state while sharing the same session-level schema.
"""

import uuid
from datetime import date, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_current_user, get_db, get_email_sender, get_extraction_client
from api.main import app
from db.session import Base
from integrations.extraction import ExtractedCoverageData, ExtractionOutcome
from notifications.email import SendResult

# In-memory SQLite for tests; the session-scoped engine and the
# function-scoped sessions share the same in-memory database.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ORGANIZATION_ID = "00000000-0000-0000-0000-000000000001"
OTHER_ORGANIZATION_ID = "00000000-0000-0000-0000-000000000002"


@pytest.fixture(scope="session")
async def test_engine():
    """Create a test database engine and build all tables once."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        await conn.begin_nested()  # SAVEPOINT

        # Every session-level commit/rollback in app code maps onto its own
        # SAVEPOINT inside ours, so nothing reaches the outer transaction
        session = AsyncSession(bind=conn, expire_on_commit=False, join_transaction_mode="create_savepoint")

        yield session

        await session.close()
        await trans.rollback()


# ─── Collaborator fakes ─────────────────────────────────────────────────────


class FakeSender:
    """Records every email instead of calling SendGrid."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    async def __call__(self, to_email: str, subject: str, html: str) -> SendResult:
        self.sent.append((to_email, subject, html))
        if self.fail:
            return SendResult(success=False, error="SendGrid returned 503")
        return SendResult(success=True)

    def subjects(self) -> list[str]:
        return [subject for _, subject, _ in self.sent]


class FakeExtractionClient:
    """Returns a preset outcome for every upload."""

    def __init__(self, outcome: ExtractionOutcome):
        self.outcome = outcome
        self.calls: list[str | None] = []

    async def extract(self, content: bytes, file_name: str | None = None) -> ExtractionOutcome:
        self.calls.append(file_name)
        return self.outcome


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def fake_extractor():
    return FakeExtractionClient(
        ExtractionOutcome(
            success=True,
            insured_name="Acme Plumbing LLC",
            certificate_holder_name="Harbor Point Properties",
            coverages=[
                ExtractedCoverageData(
                    coverage_type="general_liability",
                    limit_type="per_occurrence",
                    limit_amount=1_000_000,
                    additional_insured_listed=True,
                    waiver_of_subrogation=True,
                    expiration_date=date.today() + timedelta(days=200),
                    carrier="Travelers",
                ),
            ],
        )
    )


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {
        "sub": "test-user-id",
        "email": "manager@harborpoint.com",
        "organization_id": ORGANIZATION_ID,
    }


@pytest.fixture
async def client(test_db, mock_user, fake_sender, fake_extractor):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_email_sender] = lambda: fake_sender
    app.dependency_overrides[get_extraction_client] = lambda: fake_extractor

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Seed data ──────────────────────────────────────────────────────────────


@pytest.fixture
async def seeded_db(test_db):
    """Organization with a property managed by a user."""
    from db.models import Organization, Property, User

    organization_id = uuid.UUID(ORGANIZATION_ID)
    test_db.add_all(
        [
            Organization(organization_id=organization_id, name="Harbor Point Management", status="active"),
            Organization(organization_id=uuid.UUID(OTHER_ORGANIZATION_ID), name="Other PM Co", status="active"),
        ]
    )
    await test_db.flush()

    manager = User(organization_id=organization_id, email="pm@harborpoint.com", name="Pat Manager")
    test_db.add(manager)
    await test_db.flush()

    prop = Property(
        organization_id=organization_id,
        manager_id=manager.user_id,
        name="Harbor Point Plaza",
        certificate_holder_name="Harbor Point Properties LLC",
        additional_insured_entities=["Harbor Point Properties LLC"],
    )
    test_db.add(prop)
    await test_db.commit()

    return {"organization_id": organization_id, "manager": manager, "property": prop}


@pytest.fixture
def make_template(test_db):
    """Factory: organization template with the given requirement dicts."""
    from db.models import CoverageRequirement, RequirementTemplate

    async def _make(organization_id, requirements, *, name="Vendor Standard", category="vendor", system=False):
        template = RequirementTemplate(
            organization_id=None if system else organization_id,
            name=name,
            category=category,
            is_system_default=system,
        )
        test_db.add(template)
        await test_db.flush()
        for position, req in enumerate(requirements):
            test_db.add(CoverageRequirement(template_id=template.template_id, position=position, **req))
        await test_db.commit()
        return template

    return _make


@pytest.fixture
def make_entity(test_db, seeded_db):
    """Factory: vendor/tenant bound to a template at the seeded property."""
    from db.models import Entity

    async def _make(template=None, *, name="Acme Plumbing", email="coi@acmeplumbing.com", entity_type="vendor", **fields):
        entity = Entity(
            organization_id=seeded_db["organization_id"],
            property_id=seeded_db["property"].property_id,
            template_id=template.template_id if template is not None else None,
            entity_type=entity_type,
            name=name,
            email=email,
            **fields,
        )
        test_db.add(entity)
        await test_db.commit()
        return entity

    return _make


@pytest.fixture
def make_certificate(test_db):
    """Factory: review_confirmed certificate with the given coverage dicts (no evaluation)."""
    from compliance.expiration import earliest_expiration
    from db.models import Certificate, ExtractedCoverage

    async def _make(entity, coverages, *, status="review_confirmed", uploaded_at=None, confirmed_at=None):
        uploaded_at = uploaded_at or datetime.utcnow()
        if status == "review_confirmed" and confirmed_at is None:
            confirmed_at = uploaded_at
        certificate = Certificate(
            entity_id=entity.entity_id,
            file_name="acord25.pdf",
            processing_status=status,
            insured_name=entity.name,
            uploaded_at=uploaded_at,
            confirmed_at=confirmed_at,
        )
        test_db.add(certificate)
        await test_db.flush()
        rows = [ExtractedCoverage(certificate_id=certificate.certificate_id, **cov) for cov in coverages]
        test_db.add_all(rows)
        certificate.earliest_expiration = earliest_expiration(row.expiration_date for row in rows)
        await test_db.commit()
        return certificate

    return _make
