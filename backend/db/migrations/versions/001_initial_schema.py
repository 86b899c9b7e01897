"""
Initial schema - all 11 tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

COVERAGE_TYPES = (
    "'general_liability', 'automobile_liability', 'workers_compensation', 'employers_liability', "
    "'umbrella_excess_liability', 'professional_liability_eo', 'property_inland_marine', "
    "'pollution_liability', 'liquor_liability', 'cyber_liability'"
)
LIMIT_TYPES = "'per_occurrence', 'aggregate', 'combined_single_limit', 'statutory', 'per_person', 'per_accident'"


def _pk(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def upgrade() -> None:
    # 1. Organizations
    op.create_table(
        "organizations",
        _pk("organization_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'trial', 'inactive')", name="ck_organization_status"),
    )

    # 2. Users
    op.create_table(
        "users",
        _pk("user_id"),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.organization_id"), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 3. Properties
    op.create_table(
        "properties",
        _pk("property_id"),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.organization_id"), nullable=False),
        sa.Column("manager_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.Text),
        sa.Column("certificate_holder_name", sa.String(255)),
        sa.Column("additional_insured_entities", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_properties_organization", "properties", ["organization_id"])

    # 4. Requirement Templates
    op.create_table(
        "requirement_templates",
        _pk("template_id"),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.organization_id"), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("risk_level", sa.String(50), nullable=False, server_default="standard"),
        sa.Column("is_system_default", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("category IN ('vendor', 'tenant')", name="ck_template_category"),
        sa.CheckConstraint(
            "risk_level IN ('standard', 'high_risk', 'professional_services', 'restaurant', 'industrial')",
            name="ck_template_risk_level",
        ),
    )
    op.create_index("ix_templates_organization", "requirement_templates", ["organization_id"])

    # 5. Coverage Requirements
    op.create_table(
        "coverage_requirements",
        _pk("requirement_id"),
        sa.Column(
            "template_id",
            UUID(as_uuid=True),
            sa.ForeignKey("requirement_templates.template_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("coverage_type", sa.String(50), nullable=False),
        sa.Column("limit_type", sa.String(30), nullable=False),
        sa.Column("minimum_limit", sa.BigInteger, nullable=True),
        sa.Column("is_required", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("requires_additional_insured", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("requires_waiver_of_subrogation", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("template_id", "coverage_type", "limit_type", name="uq_requirement_template_coverage_limit"),
        sa.CheckConstraint(f"coverage_type IN ({COVERAGE_TYPES})", name="ck_requirement_coverage_type"),
        sa.CheckConstraint(f"limit_type IN ({LIMIT_TYPES})", name="ck_requirement_limit_type"),
        sa.CheckConstraint("minimum_limit IS NULL OR minimum_limit >= 0", name="ck_requirement_minimum_limit"),
    )

    # 6. Entities (vendors + tenants)
    op.create_table(
        "entities",
        _pk("entity_id"),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.organization_id"), nullable=False),
        sa.Column("property_id", UUID(as_uuid=True), sa.ForeignKey("properties.property_id"), nullable=False),
        sa.Column("template_id", UUID(as_uuid=True), sa.ForeignKey("requirement_templates.template_id"), nullable=True),
        sa.Column("entity_type", sa.String(10), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("unit_suite", sa.String(50)),
        sa.Column("compliance_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("requirements_met", sa.Boolean, nullable=True),
        sa.Column("notifications_paused", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("upload_token", sa.String(64), unique=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
        sa.CheckConstraint("entity_type IN ('vendor', 'tenant')", name="ck_entity_type"),
        sa.CheckConstraint(
            "compliance_status IN ('pending', 'compliant', 'non_compliant', 'expiring_soon', 'expired')",
            name="ck_entity_compliance_status",
        ),
    )
    op.create_index("ix_entities_template", "entities", ["template_id"])
    op.create_index("ix_entities_organization_status", "entities", ["organization_id", "compliance_status"])

    # 7. Certificates
    op.create_table(
        "certificates",
        _pk("certificate_id"),
        sa.Column("entity_id", UUID(as_uuid=True), sa.ForeignKey("entities.entity_id"), nullable=False),
        sa.Column("file_name", sa.String(255)),
        sa.Column("uploaded_by", sa.String(20), nullable=False, server_default="manager"),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="processing"),
        sa.Column("failure_reason", sa.Text),
        sa.Column("insured_name", sa.String(255)),
        sa.Column("certificate_holder_name", sa.String(255)),
        sa.Column("earliest_expiration", sa.Date, nullable=True),
        sa.Column("uploaded_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("confirmed_at", sa.DateTime, nullable=True),
        sa.CheckConstraint(
            "processing_status IN ('processing', 'extracted', 'review_confirmed', 'failed')",
            name="ck_certificate_status",
        ),
        sa.CheckConstraint("uploaded_by IN ('manager', 'self_service')", name="ck_certificate_uploaded_by"),
    )
    op.create_index(
        "ix_certificates_entity_status", "certificates", ["entity_id", "processing_status", "uploaded_at"]
    )

    # 8. Extracted Coverages
    op.create_table(
        "extracted_coverages",
        _pk("coverage_id"),
        sa.Column(
            "certificate_id",
            UUID(as_uuid=True),
            sa.ForeignKey("certificates.certificate_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("coverage_type", sa.String(50), nullable=False),
        sa.Column("limit_type", sa.String(30), nullable=False),
        sa.Column("limit_amount", sa.BigInteger, nullable=True),
        sa.Column("additional_insured_listed", sa.Boolean, nullable=True),
        sa.Column("waiver_of_subrogation", sa.Boolean, nullable=True),
        sa.Column("expiration_date", sa.Date, nullable=True),
        sa.Column("policy_number", sa.String(100)),
        sa.Column("carrier", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_extracted_coverages_certificate", "extracted_coverages", ["certificate_id"])

    # 9. Compliance Results
    op.create_table(
        "compliance_results",
        _pk("result_id"),
        sa.Column(
            "certificate_id",
            UUID(as_uuid=True),
            sa.ForeignKey("certificates.certificate_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "requirement_id",
            UUID(as_uuid=True),
            sa.ForeignKey("coverage_requirements.requirement_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "extracted_coverage_id", UUID(as_uuid=True), sa.ForeignKey("extracted_coverages.coverage_id"), nullable=True
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("gap_description", sa.Text),
        sa.Column("evaluated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("certificate_id", "requirement_id", name="uq_result_certificate_requirement"),
        sa.CheckConstraint("status IN ('met', 'not_met', 'missing', 'not_required')", name="ck_result_status"),
    )

    # 10. Email Log (append-only)
    op.create_table(
        "email_log",
        _pk("log_id"),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.organization_id"), nullable=False),
        sa.Column("entity_id", UUID(as_uuid=True), sa.ForeignKey("entities.entity_id"), nullable=False),
        sa.Column("certificate_id", UUID(as_uuid=True), sa.ForeignKey("certificates.certificate_id"), nullable=True),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("follow_up_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("recipient_email", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(500)),
        sa.Column("delivery_status", sa.String(10), nullable=False, server_default="sent"),
        sa.Column("error_message", sa.Text),
        sa.Column("sent_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "kind IN ('expiring_30', 'expiring_7', 'expired', 'non_compliant', 'follow_up', 'manual_intervention')",
            name="ck_email_log_kind",
        ),
        sa.CheckConstraint("delivery_status IN ('sent', 'failed')", name="ck_email_log_delivery_status"),
        sa.CheckConstraint("follow_up_count >= 0", name="ck_email_log_follow_up_count"),
    )
    op.create_index("ix_email_log_entity_kind", "email_log", ["entity_id", "kind"])
    op.create_index("ix_email_log_entity_sent", "email_log", ["entity_id", "sent_at"])
    op.execute(
        """
        CREATE OR REPLACE FUNCTION email_log_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'email_log rows are append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_email_log_append_only
        BEFORE UPDATE OR DELETE ON email_log
        FOR EACH ROW EXECUTE FUNCTION email_log_append_only();
        """
    )

    # 11. Activity Log
    op.create_table(
        "activity_log",
        _pk("activity_id"),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.organization_id"), nullable=False),
        sa.Column("entity_id", UUID(as_uuid=True), sa.ForeignKey("entities.entity_id"), nullable=False),
        sa.Column("activity_type", sa.String(30), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("metadata", JSONB, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "activity_type IN ('status_changed', 'template_updated', 'certificate_confirmed', "
            "'certificate_failed', 'email_sent')",
            name="ck_activity_type",
        ),
    )
    op.create_index("ix_activity_entity_created", "activity_log", ["entity_id", "created_at"])


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_email_log_append_only ON email_log")
    op.execute("DROP FUNCTION IF EXISTS email_log_append_only()")
    tables = [
        "activity_log",
        "email_log",
        "compliance_results",
        "extracted_coverages",
        "certificates",
        "entities",
        "coverage_requirements",
        "requirement_templates",
        "properties",
        "users",
        "organizations",
    ]
    for table in tables:
        op.drop_table(table)
