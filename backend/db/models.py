"""
CoverWatch Database Models

11 tables for insurance-certificate compliance tracking.
Multi-tenant via organization_id on all tenant-owned tables.

Tables:
  Accounts (1-3):
  1. organizations           - Tenant organizations (property management companies)
  2. users                   - Property-manager accounts (escalation recipients)
  3. properties              - Managed properties (certificate holder, AI entities)

  Requirements (4-5):
  4. requirement_templates   - Named sets of coverage rules (system default or org-owned)
  5. coverage_requirements   - One rule per (template, coverage_type, limit_type)

  Entities & Certificates (6-9):
  6. entities                - Vendors and tenants bound to a template
  7. certificates            - Uploaded COIs (processing state machine)
  8. extracted_coverages     - Immutable coverage facts extracted from a certificate
  9. compliance_results      - Per-requirement evaluation of a certificate

  Notifications & Audit (10-11):
  10. email_log              - Append-only notification log (dedup source of truth)
  11. activity_log           - Append-only entity history
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    event,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

# ─── Enumerations ──────────────────────────────────────────────────────────

COVERAGE_TYPES = (
    "general_liability",
    "automobile_liability",
    "workers_compensation",
    "employers_liability",
    "umbrella_excess_liability",
    "professional_liability_eo",
    "property_inland_marine",
    "pollution_liability",
    "liquor_liability",
    "cyber_liability",
)

LIMIT_TYPES = (
    "per_occurrence",
    "aggregate",
    "combined_single_limit",
    "statutory",
    "per_person",
    "per_accident",
)

ENTITY_TYPES = ("vendor", "tenant")
COMPLIANCE_STATUSES = ("pending", "compliant", "non_compliant", "expiring_soon", "expired")
RESULT_STATUSES = ("met", "not_met", "missing", "not_required")
PROCESSING_STATUSES = ("processing", "extracted", "review_confirmed", "failed")
EMAIL_KINDS = ("expiring_30", "expiring_7", "expired", "non_compliant", "follow_up", "manual_intervention")


def _in(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{v}'" for v in values)


# ─── 1. Organizations ──────────────────────────────────────────────────────


class Organization(Base):
    __tablename__ = "organizations"

    organization_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (CheckConstraint("status IN ('active', 'trial', 'inactive')", name="ck_organization_status"),)

    properties = relationship("Property", back_populates="organization", cascade="all, delete-orphan")


# ─── 2. Users ──────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    user_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    organization_id = Column(GUID(), ForeignKey("organizations.organization_id"), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 3. Properties ─────────────────────────────────────────────────────────


class Property(Base):
    __tablename__ = "properties"

    property_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    organization_id = Column(GUID(), ForeignKey("organizations.organization_id"), nullable=False)
    manager_id = Column(GUID(), ForeignKey("users.user_id"), nullable=True)
    name = Column(String(255), nullable=False)
    address = Column(Text)
    certificate_holder_name = Column(String(255))
    additional_insured_entities = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("ix_properties_organization", "organization_id"),)

    organization = relationship("Organization", back_populates="properties")


# ─── 4. Requirement Templates ──────────────────────────────────────────────


class RequirementTemplate(Base):
    __tablename__ = "requirement_templates"

    template_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    # NULL for system defaults shared by every organization
    organization_id = Column(GUID(), ForeignKey("organizations.organization_id"), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    category = Column(String(20), nullable=False)
    risk_level = Column(String(50), nullable=False, default="standard")
    is_system_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(f"category IN ({_in(ENTITY_TYPES)})", name="ck_template_category"),
        CheckConstraint(
            "risk_level IN ('standard', 'high_risk', 'professional_services', 'restaurant', 'industrial')",
            name="ck_template_risk_level",
        ),
        Index("ix_templates_organization", "organization_id"),
    )

    requirements = relationship(
        "CoverageRequirement",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="CoverageRequirement.position",
    )


# ─── 5. Coverage Requirements ──────────────────────────────────────────────


class CoverageRequirement(Base):
    __tablename__ = "coverage_requirements"

    requirement_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    template_id = Column(GUID(), ForeignKey("requirement_templates.template_id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    coverage_type = Column(String(50), nullable=False)
    limit_type = Column(String(30), nullable=False)
    minimum_limit = Column(BigInteger, nullable=True)  # NULL => presence only
    is_required = Column(Boolean, nullable=False, default=True)
    requires_additional_insured = Column(Boolean, nullable=False, default=False)
    requires_waiver_of_subrogation = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("template_id", "coverage_type", "limit_type", name="uq_requirement_template_coverage_limit"),
        CheckConstraint(f"coverage_type IN ({_in(COVERAGE_TYPES)})", name="ck_requirement_coverage_type"),
        CheckConstraint(f"limit_type IN ({_in(LIMIT_TYPES)})", name="ck_requirement_limit_type"),
        CheckConstraint("minimum_limit IS NULL OR minimum_limit >= 0", name="ck_requirement_minimum_limit"),
    )

    template = relationship("RequirementTemplate", back_populates="requirements")


# ─── 6. Entities (vendors + tenants) ───────────────────────────────────────


class Entity(Base):
    __tablename__ = "entities"

    entity_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    organization_id = Column(GUID(), ForeignKey("organizations.organization_id"), nullable=False)
    property_id = Column(GUID(), ForeignKey("properties.property_id"), nullable=False)
    template_id = Column(GUID(), ForeignKey("requirement_templates.template_id"), nullable=True)
    entity_type = Column(String(10), nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    unit_suite = Column(String(50))
    compliance_status = Column(String(20), nullable=False, default="pending")
    # Requirement-only outcome, kept apart from the expiration-driven status
    requirements_met = Column(Boolean, nullable=True)
    notifications_paused = Column(Boolean, nullable=False, default=False)
    upload_token = Column(String(64), unique=True, default=lambda: uuid.uuid4().hex)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(f"entity_type IN ({_in(ENTITY_TYPES)})", name="ck_entity_type"),
        CheckConstraint(f"compliance_status IN ({_in(COMPLIANCE_STATUSES)})", name="ck_entity_compliance_status"),
        Index("ix_entities_template", "template_id"),
        Index("ix_entities_organization_status", "organization_id", "compliance_status"),
    )


# ─── 7. Certificates ───────────────────────────────────────────────────────


class Certificate(Base):
    __tablename__ = "certificates"

    certificate_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    entity_id = Column(GUID(), ForeignKey("entities.entity_id"), nullable=False)
    file_name = Column(String(255))
    uploaded_by = Column(String(20), nullable=False, default="manager")
    processing_status = Column(String(20), nullable=False, default="processing")
    failure_reason = Column(Text)
    insured_name = Column(String(255))
    certificate_holder_name = Column(String(255))
    earliest_expiration = Column(Date, nullable=True)
    uploaded_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    confirmed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(f"processing_status IN ({_in(PROCESSING_STATUSES)})", name="ck_certificate_status"),
        CheckConstraint("uploaded_by IN ('manager', 'self_service')", name="ck_certificate_uploaded_by"),
        Index("ix_certificates_entity_status", "entity_id", "processing_status", "uploaded_at"),
    )


# ─── 8. Extracted Coverages ────────────────────────────────────────────────


class ExtractedCoverage(Base):
    __tablename__ = "extracted_coverages"

    coverage_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    certificate_id = Column(GUID(), ForeignKey("certificates.certificate_id", ondelete="CASCADE"), nullable=False)
    coverage_type = Column(String(50), nullable=False)
    limit_type = Column(String(30), nullable=False)
    limit_amount = Column(BigInteger, nullable=True)
    additional_insured_listed = Column(Boolean, nullable=True)
    waiver_of_subrogation = Column(Boolean, nullable=True)
    expiration_date = Column(Date, nullable=True)
    policy_number = Column(String(100))
    carrier = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_extracted_coverages_certificate", "certificate_id"),)


# ─── 9. Compliance Results ─────────────────────────────────────────────────


class ComplianceResult(Base):
    __tablename__ = "compliance_results"

    result_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    certificate_id = Column(GUID(), ForeignKey("certificates.certificate_id", ondelete="CASCADE"), nullable=False)
    requirement_id = Column(
        GUID(), ForeignKey("coverage_requirements.requirement_id", ondelete="CASCADE"), nullable=False
    )
    extracted_coverage_id = Column(GUID(), ForeignKey("extracted_coverages.coverage_id"), nullable=True)
    status = Column(String(20), nullable=False)
    gap_description = Column(Text)
    evaluated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("certificate_id", "requirement_id", name="uq_result_certificate_requirement"),
        CheckConstraint(f"status IN ({_in(RESULT_STATUSES)})", name="ck_result_status"),
    )


# ─── 10. Email Log ─────────────────────────────────────────────────────────


class EmailLogEntry(Base):
    __tablename__ = "email_log"

    log_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    organization_id = Column(GUID(), ForeignKey("organizations.organization_id"), nullable=False)
    entity_id = Column(GUID(), ForeignKey("entities.entity_id"), nullable=False)
    certificate_id = Column(GUID(), ForeignKey("certificates.certificate_id"), nullable=True)
    kind = Column(String(30), nullable=False)
    follow_up_count = Column(Integer, nullable=False, default=0)
    recipient_email = Column(String(255), nullable=False)
    subject = Column(String(500))
    delivery_status = Column(String(10), nullable=False, default="sent")
    error_message = Column(Text)
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(f"kind IN ({_in(EMAIL_KINDS)})", name="ck_email_log_kind"),
        CheckConstraint("delivery_status IN ('sent', 'failed')", name="ck_email_log_delivery_status"),
        CheckConstraint("follow_up_count >= 0", name="ck_email_log_follow_up_count"),
        Index("ix_email_log_entity_kind", "entity_id", "kind"),
        Index("ix_email_log_entity_sent", "entity_id", "sent_at"),
    )


@event.listens_for(EmailLogEntry, "before_update")
@event.listens_for(EmailLogEntry, "before_delete")
def _email_log_is_append_only(mapper, connection, target):
    raise ValueError("email_log rows are append-only")


# ─── 11. Activity Log ──────────────────────────────────────────────────────


class ActivityLog(Base):
    __tablename__ = "activity_log"

    activity_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    organization_id = Column(GUID(), ForeignKey("organizations.organization_id"), nullable=False)
    entity_id = Column(GUID(), ForeignKey("entities.entity_id"), nullable=False)
    activity_type = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    activity_metadata = Column("metadata", JSON, default=dict)
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "activity_type IN ('status_changed', 'template_updated', 'certificate_confirmed', "
            "'certificate_failed', 'email_sent')",
            name="ck_activity_type",
        ),
        Index("ix_activity_entity_created", "entity_id", "created_at"),
    )
