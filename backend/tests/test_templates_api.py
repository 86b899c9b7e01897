"""
API Tests — requirement templates.
"""

import pytest
from httpx import AsyncClient

OTHER_ORGANIZATION_ID = "00000000-0000-0000-0000-000000000002"

GL = {"coverage_type": "general_liability", "limit_type": "per_occurrence", "minimum_limit": 1_000_000}
AUTO = {"coverage_type": "automobile_liability", "limit_type": "combined_single_limit", "minimum_limit": 1_000_000}


async def _create(client: AsyncClient, requirements=None, **fields):
    body = {"name": "Vendor Standard", "category": "vendor", "requirements": requirements or [GL], **fields}
    response = await client.post("/api/v1/templates/", json=body)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
class TestTemplateCrud:
    async def test_create_and_get(self, client: AsyncClient, seeded_db):
        created = await _create(client, [GL, AUTO], risk_level="high_risk")

        response = await client.get(f"/api/v1/templates/{created['template_id']}")

        assert response.status_code == 200
        data = response.json()
        assert data["is_system_default"] is False
        assert data["risk_level"] == "high_risk"
        assert [r["coverage_type"] for r in data["requirements"]] == ["general_liability", "automobile_liability"]

    async def test_duplicate_pair_rejected(self, client: AsyncClient, seeded_db):
        body = {"name": "Broken", "category": "vendor", "requirements": [GL, {**GL, "minimum_limit": 2_000_000}]}
        response = await client.post("/api/v1/templates/", json=body)
        assert response.status_code == 422

    async def test_unknown_coverage_type_rejected(self, client: AsyncClient, seeded_db):
        body = {
            "name": "Broken",
            "category": "vendor",
            "requirements": [{"coverage_type": "crime", "limit_type": "per_occurrence"}],
        }
        response = await client.post("/api/v1/templates/", json=body)
        assert response.status_code == 422

    async def test_list_includes_system_defaults(self, client: AsyncClient, seeded_db, make_template):
        await make_template(None, [GL], name="Office Tenant", category="tenant", system=True)
        await _create(client)

        response = await client.get("/api/v1/templates/", params={"category": "vendor"})

        assert response.status_code == 200
        assert [t["name"] for t in response.json()] == ["Vendor Standard"]
        all_templates = (await client.get("/api/v1/templates/")).json()
        assert {t["name"] for t in all_templates} == {"Vendor Standard", "Office Tenant"}

    async def test_other_organization_template_is_not_found(self, client: AsyncClient, seeded_db, make_template):
        foreign = await make_template(OTHER_ORGANIZATION_ID, [GL], name="Theirs")
        response = await client.get(f"/api/v1/templates/{foreign.template_id}")
        assert response.status_code == 404

    async def test_delete_unused(self, client: AsyncClient, seeded_db):
        created = await _create(client)

        response = await client.delete(f"/api/v1/templates/{created['template_id']}")

        assert response.status_code == 204
        assert (await client.get(f"/api/v1/templates/{created['template_id']}")).status_code == 404

    async def test_delete_in_use_rejected(self, client: AsyncClient, seeded_db, make_template, make_entity):
        template = await make_template(seeded_db["organization_id"], [GL])
        await make_entity(template)
        await make_entity(template, name="Bayside Electric", email="coi@bayside.com")

        response = await client.delete(f"/api/v1/templates/{template.template_id}")

        assert response.status_code == 409
        assert "assigned to 2 entities" in response.json()["detail"]


@pytest.mark.asyncio
class TestSystemDefaults:
    async def test_cannot_edit_or_delete(self, client: AsyncClient, seeded_db, make_template):
        system = await make_template(None, [GL], name="Standard Vendor", system=True)

        edit = await client.put(f"/api/v1/templates/{system.template_id}", json={"name": "Mine now"})
        delete = await client.delete(f"/api/v1/templates/{system.template_id}")

        assert edit.status_code == 403
        assert delete.status_code == 403

    async def test_duplicate_creates_editable_copy(self, client: AsyncClient, seeded_db, make_template):
        system = await make_template(None, [GL, AUTO], name="Standard Vendor", system=True)

        response = await client.post(f"/api/v1/templates/{system.template_id}/duplicate")

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Standard Vendor (Custom)"
        assert data["is_system_default"] is False
        assert data["organization_id"] == str(seeded_db["organization_id"])
        assert len(data["requirements"]) == 2


@pytest.mark.asyncio
class TestTemplateUpdateCascade:
    async def test_update_returns_cascade_summary(
        self, client: AsyncClient, seeded_db, make_template, make_entity, make_certificate
    ):
        template = await make_template(seeded_db["organization_id"], [GL])
        entity = await make_entity(template)
        await make_certificate(
            entity,
            [{"coverage_type": "general_liability", "limit_type": "per_occurrence", "limit_amount": 1_000_000}],
        )
        await make_entity(template, name="Bayside Electric", email="coi@bayside.com")

        response = await client.put(
            f"/api/v1/templates/{template.template_id}",
            json={"requirements": [{**GL, "minimum_limit": 2_000_000}]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["template"]["requirements"][0]["minimum_limit"] == 2_000_000
        assert data["cascade"]["entities_total"] == 2
        assert data["cascade"]["entities_updated"] == 1
        assert data["cascade"]["entities_pending"] == 1
        assert data["cascade"]["entities_failed"] == 0

        compliance = (await client.get(f"/api/v1/entities/{entity.entity_id}/compliance")).json()
        assert compliance["compliance_status"] == "non_compliant"
        assert compliance["results"][0]["gap_description"] == "Limit is $1,000,000 but requirement is $2,000,000"

    async def test_name_only_update_skips_cascade(self, client: AsyncClient, seeded_db):
        created = await _create(client)

        response = await client.put(f"/api/v1/templates/{created['template_id']}", json={"name": "Vendor Basic"})

        assert response.status_code == 200
        assert response.json()["template"]["name"] == "Vendor Basic"
        assert response.json()["cascade"] is None

    async def test_usage(self, client: AsyncClient, seeded_db, make_template, make_entity):
        template = await make_template(seeded_db["organization_id"], [GL])
        await make_entity(template)
        await make_entity(template, name="Corner Deli", email="owner@cornerdeli.com", entity_type="tenant")

        response = await client.get(f"/api/v1/templates/{template.template_id}/usage")

        assert response.status_code == 200
        assert response.json() == {"vendors": 1, "tenants": 1, "total_entities": 2, "properties": 1}
