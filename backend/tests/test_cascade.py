"""Tests for per-entity evaluation and the template cascade."""

from datetime import date, timedelta

from sqlalchemy import func, select

from compliance import cascade
from compliance.cascade import evaluate_entity, recalculate_template
from compliance.templates import update_template
from db.models import ActivityLog, ComplianceResult, CoverageRequirement

GL_1M = {"coverage_type": "general_liability", "limit_type": "per_occurrence", "minimum_limit": 1_000_000}
AUTO_1M = {"coverage_type": "automobile_liability", "limit_type": "combined_single_limit", "minimum_limit": 1_000_000}
WC = {"coverage_type": "workers_compensation", "limit_type": "statutory", "minimum_limit": None}


def _gl(amount=1_000_000, days=200):
    return {
        "coverage_type": "general_liability",
        "limit_type": "per_occurrence",
        "limit_amount": amount,
        "expiration_date": date.today() + timedelta(days=days),
    }


async def _result_count(db, certificate_id):
    return (
        await db.execute(select(func.count()).where(ComplianceResult.certificate_id == certificate_id))
    ).scalar_one()


class TestEvaluateEntity:
    async def test_no_certificate_is_pending(self, test_db, seeded_db, make_template, make_entity):
        template = await make_template(seeded_db["organization_id"], [GL_1M])
        entity = await make_entity(template)

        evaluation = await evaluate_entity(test_db, entity)

        assert evaluation.compliance_status == "pending"
        assert entity.requirements_met is None

    async def test_unconfirmed_certificate_is_ignored(
        self, test_db, seeded_db, make_template, make_entity, make_certificate
    ):
        template = await make_template(seeded_db["organization_id"], [GL_1M])
        entity = await make_entity(template)
        await make_certificate(entity, [_gl()], status="extracted")

        evaluation = await evaluate_entity(test_db, entity)
        assert evaluation.certificate_id is None
        assert evaluation.compliance_status == "pending"

    async def test_gap_is_non_compliant_and_logged(
        self, test_db, seeded_db, make_template, make_entity, make_certificate
    ):
        template = await make_template(seeded_db["organization_id"], [GL_1M])
        entity = await make_entity(template)
        await make_certificate(entity, [_gl(amount=500_000)])

        evaluation = await evaluate_entity(test_db, entity)
        await test_db.commit()

        assert evaluation.compliance_status == "non_compliant"
        assert entity.requirements_met is False
        assert evaluation.results[0].gap_description == "Limit is $500,000 but requirement is $1,000,000"
        activity = (
            await test_db.execute(select(ActivityLog).where(ActivityLog.entity_id == entity.entity_id))
        ).scalar_one()
        assert activity.activity_type == "status_changed"
        assert activity.activity_metadata["to"] == "non_compliant"

    async def test_compliant_but_expiring_keeps_requirement_flag(
        self, test_db, seeded_db, make_template, make_entity, make_certificate
    ):
        template = await make_template(seeded_db["organization_id"], [GL_1M])
        entity = await make_entity(template)
        await make_certificate(entity, [_gl(days=5)])

        evaluation = await evaluate_entity(test_db, entity)

        assert evaluation.compliance_status == "expiring_soon"
        assert entity.requirements_met is True

    async def test_latest_confirmed_certificate_is_current(
        self, test_db, seeded_db, make_template, make_entity, make_certificate
    ):
        from datetime import datetime

        template = await make_template(seeded_db["organization_id"], [GL_1M])
        entity = await make_entity(template)
        await make_certificate(entity, [_gl(amount=100)], uploaded_at=datetime.utcnow() - timedelta(days=30))
        newest = await make_certificate(entity, [_gl()])

        evaluation = await evaluate_entity(test_db, entity)
        assert evaluation.certificate_id == newest.certificate_id
        assert evaluation.compliance_status == "compliant"


class TestRecalculateTemplate:
    async def test_results_match_current_requirements(
        self, test_db, seeded_db, make_template, make_entity, make_certificate
    ):
        template = await make_template(seeded_db["organization_id"], [GL_1M, WC])
        first = await make_entity(template, name="Acme Plumbing")
        second = await make_entity(template, name="Bright Electric")
        cert_a = await make_certificate(first, [_gl()])
        cert_b = await make_certificate(second, [_gl()])
        await make_entity(template, name="No Cert Yet")

        result = await recalculate_template(test_db, template.template_id)

        assert result.entities_total == 3
        assert result.entities_updated == 2
        assert result.entities_pending == 1
        assert result.entities_failed == 0
        assert await _result_count(test_db, cert_a.certificate_id) == 2
        assert await _result_count(test_db, cert_b.certificate_id) == 2

        # Re-running replaces rather than appends
        await recalculate_template(test_db, template.template_id)
        assert await _result_count(test_db, cert_a.certificate_id) == 2

    async def test_removing_auto_requirement_flips_entity_to_compliant(
        self, test_db, seeded_db, make_template, make_entity, make_certificate
    ):
        organization_id = seeded_db["organization_id"]
        template = await make_template(organization_id, [GL_1M, AUTO_1M])
        entity = await make_entity(template)
        certificate = await make_certificate(entity, [_gl()])

        await recalculate_template(test_db, template.template_id)
        assert entity.compliance_status == "non_compliant"

        _, summary = await update_template(
            test_db,
            template.template_id,
            organization_id,
            requirements=[GL_1M],
        )

        assert summary.entities_updated == 1
        assert entity.compliance_status == "compliant"
        assert entity.requirements_met is True
        statuses = (
            await test_db.execute(
                select(CoverageRequirement.coverage_type)
                .join(ComplianceResult, ComplianceResult.requirement_id == CoverageRequirement.requirement_id)
                .where(ComplianceResult.certificate_id == certificate.certificate_id)
            )
        ).scalars().all()
        assert statuses == ["general_liability"]

    async def test_one_failing_entity_does_not_stop_the_sweep(
        self, test_db, seeded_db, make_template, make_entity, make_certificate, monkeypatch
    ):
        template = await make_template(seeded_db["organization_id"], [GL_1M])
        healthy = await make_entity(template, name="Healthy Vendor")
        broken = await make_entity(template, name="Broken Vendor")
        await make_certificate(healthy, [_gl()])
        await make_certificate(broken, [_gl()])

        real_evaluate = cascade.evaluate_entity

        async def flaky_evaluate(db, entity, **kwargs):
            if entity.entity_id == broken.entity_id:
                raise RuntimeError("connection reset")
            return await real_evaluate(db, entity, **kwargs)

        monkeypatch.setattr(cascade, "evaluate_entity", flaky_evaluate)

        result = await recalculate_template(test_db, template.template_id)

        assert result.entities_total == 2
        assert result.entities_updated == 1
        assert result.entities_failed == 1
        assert result.failed_entity_ids == [str(broken.entity_id)]
        assert healthy.compliance_status == "compliant"

    async def test_failed_entity_keeps_results_after_template_edit(
        self, test_db, seeded_db, make_template, make_entity, make_certificate, monkeypatch
    ):
        organization_id = seeded_db["organization_id"]
        template = await make_template(organization_id, [GL_1M])
        entity = await make_entity(template)
        certificate = await make_certificate(entity, [_gl()])
        await recalculate_template(test_db, template.template_id)
        (before,) = (
            await test_db.execute(
                select(ComplianceResult).where(ComplianceResult.certificate_id == certificate.certificate_id)
            )
        ).scalars().all()
        requirement_id = before.requirement_id

        async def failing_evaluate(db, entity, **kwargs):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(cascade, "evaluate_entity", failing_evaluate)

        _, summary = await update_template(
            test_db,
            template.template_id,
            organization_id,
            requirements=[{**GL_1M, "minimum_limit": 2_000_000}],
        )

        assert summary.entities_failed == 1
        assert entity.compliance_status == "compliant"
        # The stale result still points at the same, now-updated requirement row
        rows = (
            await test_db.execute(
                select(
                    ComplianceResult.status,
                    CoverageRequirement.requirement_id,
                    CoverageRequirement.minimum_limit,
                )
                .join(CoverageRequirement, CoverageRequirement.requirement_id == ComplianceResult.requirement_id)
                .where(ComplianceResult.certificate_id == certificate.certificate_id)
            )
        ).all()
        assert rows == [("met", requirement_id, 2_000_000)]

    async def test_edit_keeps_ids_of_unchanged_requirements(
        self, test_db, seeded_db, make_template, make_entity
    ):
        organization_id = seeded_db["organization_id"]
        template = await make_template(organization_id, [GL_1M, AUTO_1M])
        requirements = (
            await test_db.execute(
                select(CoverageRequirement).where(CoverageRequirement.template_id == template.template_id)
            )
        ).scalars().all()
        gl_id = next(r.requirement_id for r in requirements if r.coverage_type == "general_liability")

        await update_template(test_db, template.template_id, organization_id, requirements=[WC, GL_1M])

        rows = (
            await test_db.execute(
                select(
                    CoverageRequirement.coverage_type,
                    CoverageRequirement.position,
                    CoverageRequirement.requirement_id,
                )
                .where(CoverageRequirement.template_id == template.template_id)
                .order_by(CoverageRequirement.position)
            )
        ).all()
        assert [(r.coverage_type, r.position) for r in rows] == [
            ("workers_compensation", 0),
            ("general_liability", 1),
        ]
        assert rows[1].requirement_id == gl_id

    async def test_deleted_entities_are_skipped(
        self, test_db, seeded_db, make_template, make_entity
    ):
        from datetime import datetime

        template = await make_template(seeded_db["organization_id"], [GL_1M])
        await make_entity(template, deleted_at=datetime.utcnow())

        result = await recalculate_template(test_db, template.template_id)
        assert result.entities_total == 0
