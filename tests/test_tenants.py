"""
Tests for tenant endpoints: superadmin management and member views.
"""
from datetime import datetime

import pytest
from httpx import AsyncClient

from finops_api.models import Budget, CloudAccount, Policy, Tenant, User
from finops_api.models.cloud_account import CloudAccountStatus, CloudProvider
from finops_api.models.policy import PolicyStatus, PolicyType
from finops_api.models.tenant import TenantStatus


class TestAdminTenants:
    """/api/admin/tenants"""

    @pytest.mark.asyncio
    async def test_create_tenant_defaults(self, client: AsyncClient, superadmin: User, headers_for, fake_redis):
        response = await client.post(
            "/api/admin/tenants",
            json={"name": "Initech Labs", "admin_email": "boss@initech.com", "settings": {"currency": "EUR"}},
            headers=headers_for(superadmin),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["slug"] == "initech-labs"
        assert data["subdomain"] == "initech-labs"
        assert data["status"] == "TRIAL"
        assert data["settings"]["currency"] == "EUR"
        assert data["settings"]["timezone"] == "UTC"
        assert fake_redis.data["subdomain:initech-labs"] == data["id"]

    @pytest.mark.asyncio
    async def test_create_with_custom_domain(self, client: AsyncClient, superadmin: User, headers_for, fake_redis):
        response = await client.post(
            "/api/admin/tenants",
            json={
                "name": "Umbrella",
                "slug": "umbrella",
                "subdomain": "umb",
                "custom_domain": "Costs.Umbrella.com",
                "admin_email": "ops@umbrella.com",
            },
            headers=headers_for(superadmin),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["custom_domain"] == "costs.umbrella.com"
        assert fake_redis.data["domain:costs.umbrella.com"] == data["id"]
        assert fake_redis.data["subdomain:umb"] == data["id"]

    @pytest.mark.asyncio
    async def test_duplicate_slug(self, client: AsyncClient, superadmin: User, tenant: Tenant, headers_for):
        response = await client.post(
            "/api/admin/tenants",
            json={"name": "Acme Again", "slug": "acme", "admin_email": "x@acme.com"},
            headers=headers_for(superadmin),
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Tenant slug already exists: acme"

    @pytest.mark.asyncio
    async def test_requires_superadmin(self, client: AsyncClient, owner: User, headers_for):
        response = await client.get("/api/admin/tenants", headers=headers_for(owner))

        assert response.status_code == 403
        assert response.json()["detail"] == "Superadmin privileges required"

    @pytest.mark.asyncio
    async def test_list_with_status_filter(
        self, client: AsyncClient, superadmin: User, tenant: Tenant, make_tenant, headers_for
    ):
        make_tenant("Sleepy", "sleepy", status=TenantStatus.SUSPENDED)

        response = await client.get("/api/admin/tenants?status=SUSPENDED", headers=headers_for(superadmin))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["tenants"][0]["slug"] == "sleepy"

    @pytest.mark.asyncio
    async def test_get_unknown(self, client: AsyncClient, superadmin: User, headers_for):
        response = await client.get("/api/admin/tenants/missing", headers=headers_for(superadmin))

        assert response.status_code == 404
        assert response.json() == {"detail": "Tenant not found: missing", "type": "not_found"}

    @pytest.mark.asyncio
    async def test_update_moves_mappings(
        self, client: AsyncClient, superadmin: User, tenant: Tenant, headers_for, fake_redis
    ):
        fake_redis.set("subdomain:acme", tenant.id)

        response = await client.put(
            f"/api/admin/tenants/{tenant.id}",
            json={"subdomain": "acme-corp", "custom_domain": "finops.acme.com", "settings": {"timezone": "Europe/Paris"}},
            headers=headers_for(superadmin),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["subdomain"] == "acme-corp"
        assert data["settings"]["timezone"] == "Europe/Paris"
        assert data["settings"]["currency"] == "USD"
        assert "subdomain:acme" not in fake_redis.data
        assert fake_redis.data["subdomain:acme-corp"] == tenant.id
        assert fake_redis.data["domain:finops.acme.com"] == tenant.id

    @pytest.mark.asyncio
    async def test_update_duplicate_subdomain(
        self, client: AsyncClient, superadmin: User, tenant: Tenant, other_tenant: Tenant, headers_for
    ):
        response = await client.put(
            f"/api/admin/tenants/{tenant.id}",
            json={"subdomain": "globex"},
            headers=headers_for(superadmin),
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_delete_cascades(
        self, client: AsyncClient, superadmin: User, tenant: Tenant, admin: User, headers_for, fake_redis, db, report_storage
    ):
        fake_redis.set("subdomain:acme", tenant.id)
        tenant_id, admin_id = tenant.id, admin.id

        response = await client.delete(f"/api/admin/tenants/{tenant_id}", headers=headers_for(superadmin))

        assert response.status_code == 204
        assert "subdomain:acme" not in fake_redis.data
        db.expire_all()
        assert db.query(Tenant).filter(Tenant.id == tenant_id).first() is None
        assert db.query(User).filter(User.id == admin_id).first() is None


class TestMemberTenantViews:
    """/api/tenants"""

    @pytest.mark.asyncio
    async def test_get_own_tenant(self, client: AsyncClient, viewer: User, tenant: Tenant, headers_for):
        response = await client.get(f"/api/tenants/{tenant.id}", headers=headers_for(viewer))

        assert response.status_code == 200
        assert response.json()["slug"] == "acme"

    @pytest.mark.asyncio
    async def test_get_other_tenant_forbidden(
        self, client: AsyncClient, viewer: User, other_tenant: Tenant, headers_for
    ):
        response = await client.get(f"/api/tenants/{other_tenant.id}", headers=headers_for(viewer))

        assert response.status_code == 403
        assert response.json()["type"] == "tenant_isolation_error"

    @pytest.mark.asyncio
    async def test_settings_read_by_any_member(self, client: AsyncClient, viewer: User, tenant: Tenant, headers_for):
        response = await client.get(f"/api/tenants/{tenant.id}/settings", headers=headers_for(viewer))

        assert response.status_code == 200
        assert response.json()["theme"] == "dark"

    @pytest.mark.asyncio
    async def test_settings_update_requires_admin(
        self, client: AsyncClient, viewer: User, tenant: Tenant, headers_for
    ):
        response = await client.put(
            f"/api/tenants/{tenant.id}/settings",
            json={"theme": "light"},
            headers=headers_for(viewer),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_settings_update_merges(self, client: AsyncClient, admin: User, tenant: Tenant, headers_for):
        response = await client.put(
            f"/api/tenants/{tenant.id}/settings",
            json={"theme": "light", "primary_color": "#112233", "settings": {"currency": "GBP"}},
            headers=headers_for(admin),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["theme"] == "light"
        assert data["primary_color"] == "#112233"
        assert data["settings"]["currency"] == "GBP"
        assert data["settings"]["fiscalYearStart"] == "JANUARY"

    @pytest.mark.asyncio
    async def test_settings_rejects_bad_color(self, client: AsyncClient, admin: User, tenant: Tenant, headers_for):
        response = await client.put(
            f"/api/tenants/{tenant.id}/settings",
            json={"primary_color": "blue"},
            headers=headers_for(admin),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_current_summary(
        self, client: AsyncClient, admin: User, viewer: User, tenant: Tenant, headers_for, db
    ):
        db.add_all([
            Budget(tenant_id=tenant.id, name="Prod", amount=1000.0, current_spend=1200.0,
                   start_date=datetime(2024, 1, 1)),
            Budget(tenant_id=tenant.id, name="Dev", amount=1000.0, current_spend=300.0,
                   start_date=datetime(2024, 1, 1)),
            Policy(tenant_id=tenant.id, name="Tags", type=PolicyType.TAGGING, status=PolicyStatus.ACTIVE,
                   enforced=True, compliance_rate=80.0),
            Policy(tenant_id=tenant.id, name="Sizes", type=PolicyType.RESOURCE, compliance_rate=90.0),
            CloudAccount(tenant_id=tenant.id, provider=CloudProvider.AWS, account_id="1",
                         account_name="Prod", status=CloudAccountStatus.ACTIVE),
            CloudAccount(tenant_id=tenant.id, provider=CloudProvider.GCP, account_id="2",
                         account_name="Data", status=CloudAccountStatus.ERROR),
        ])
        db.commit()

        response = await client.get("/api/tenants/current/summary", headers=headers_for(viewer))

        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] == tenant.id
        assert data["budgets"] == {
            "count": 2,
            "total_amount": 2000.0,
            "total_spend": 1500.0,
            "utilization": 75.0,
            "over_budget": 1,
        }
        assert data["policies"] == {"total": 2, "active": 1, "enforced": 1, "average_compliance": 85.0}
        assert data["cloud_accounts"] == {"total": 2, "by_status": {"ACTIVE": 1, "ERROR": 1}}
        assert data["users"] == {"total": 2, "active": 2}
