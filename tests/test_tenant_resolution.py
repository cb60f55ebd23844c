"""
Tests for TenantMiddleware and the tenant checks in get_current_user.
"""
import pytest
from httpx import AsyncClient

from finops_api.core.kv import KVStore, lookup_tenant_mapping, set_kv_store, store_tenant_mapping
from finops_api.models import Tenant, User
from finops_api.models.tenant import TenantStatus

from conftest import UnavailableRedis


class TestTenantResolution:

    @pytest.mark.asyncio
    async def test_no_tenant_context(self, client: AsyncClient, tenant: Tenant):
        response = await client.get("/api/budgets")

        assert response.status_code == 400
        assert response.json() == {"detail": "Tenant context required", "type": "tenant_required"}

    @pytest.mark.asyncio
    async def test_header_by_id(self, client: AsyncClient, admin: User, tenant: Tenant, headers_for):
        headers = {**headers_for(admin), "X-Tenant-ID": tenant.id}
        response = await client.get("/api/budgets", headers=headers)

        assert response.status_code == 200
        assert response.headers["X-Tenant-ID"] == tenant.id

    @pytest.mark.asyncio
    async def test_header_by_slug(self, client: AsyncClient, admin: User, tenant: Tenant, headers_for):
        headers = {**headers_for(admin), "X-Tenant-ID": "acme"}
        response = await client.get("/api/budgets", headers=headers)

        assert response.status_code == 200
        assert response.headers["X-Tenant-ID"] == tenant.id

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, client: AsyncClient, tenant: Tenant):
        response = await client.get("/api/budgets", headers={"X-Tenant-ID": "nope"})

        assert response.status_code == 404
        assert response.json() == {"detail": "Tenant not found: nope", "type": "tenant_not_found"}

    @pytest.mark.asyncio
    async def test_inactive_tenant(self, client: AsyncClient, make_tenant):
        make_tenant("Frozen", "frozen", status=TenantStatus.SUSPENDED)

        response = await client.get("/api/budgets", headers={"X-Tenant-ID": "frozen"})

        assert response.status_code == 403
        assert response.json()["type"] == "tenant_inactive"

    @pytest.mark.asyncio
    async def test_trial_tenant_is_usable(self, client: AsyncClient, make_tenant, make_user, headers_for):
        trial = make_tenant("Trial Co", "trialco", status=TenantStatus.TRIAL)
        user = make_user(trial, "viewer@trialco.com")

        response = await client.get("/api/budgets", headers=headers_for(user))
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_platform_subdomain(self, client: AsyncClient, viewer: User, tenant: Tenant, headers_for):
        headers = {**headers_for(viewer), "Host": "acme.finops.app"}
        response = await client.get("/api/budgets", headers=headers)

        assert response.status_code == 200
        assert response.headers["X-Tenant-ID"] == tenant.id

    @pytest.mark.asyncio
    async def test_subdomain_mapping(self, client: AsyncClient, viewer: User, tenant: Tenant, headers_for):
        store_tenant_mapping("subdomain", "acme-eu", tenant.id)

        headers = {**headers_for(viewer), "Host": "acme-eu.finops.app"}
        response = await client.get("/api/budgets", headers=headers)

        assert response.status_code == 200
        assert response.headers["X-Tenant-ID"] == tenant.id

    @pytest.mark.asyncio
    async def test_custom_domain_mapping(self, client: AsyncClient, viewer: User, tenant: Tenant, headers_for):
        store_tenant_mapping("domain", "Costs.Acme.com", tenant.id)

        headers = {**headers_for(viewer), "Host": "costs.acme.com:443"}
        response = await client.get("/api/budgets", headers=headers)

        assert response.status_code == 200
        assert response.headers["X-Tenant-ID"] == tenant.id

    @pytest.mark.asyncio
    async def test_reserved_subdomain_ignored(self, client: AsyncClient, tenant: Tenant):
        response = await client.get("/api/budgets", headers={"Host": "www.finops.app"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_token_claim_fallback(self, client: AsyncClient, viewer: User, tenant: Tenant, headers_for):
        response = await client.get("/api/budgets", headers=headers_for(viewer))

        assert response.status_code == 200
        assert response.headers["X-Tenant-ID"] == tenant.id

    @pytest.mark.asyncio
    async def test_health_skips_resolution(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Tenant-ID" not in response.headers

    @pytest.mark.asyncio
    async def test_kv_outage_falls_back_to_token(self, client: AsyncClient, viewer: User, tenant: Tenant, headers_for):
        set_kv_store(KVStore(UnavailableRedis()))

        response = await client.get("/api/budgets", headers=headers_for(viewer))

        assert response.status_code == 200
        assert response.headers["X-Tenant-ID"] == tenant.id


class TestTenantIsolation:

    @pytest.mark.asyncio
    async def test_token_for_other_tenant_rejected(
        self, client: AsyncClient, admin: User, other_tenant: Tenant, headers_for
    ):
        headers = {**headers_for(admin), "X-Tenant-ID": other_tenant.id}
        response = await client.get("/api/budgets", headers=headers)

        assert response.status_code == 403
        assert response.json() == {"detail": "Token tenant mismatch", "type": "tenant_isolation_error"}

    @pytest.mark.asyncio
    async def test_superadmin_may_enter_any_tenant(
        self, client: AsyncClient, superadmin: User, other_tenant: Tenant, headers_for
    ):
        headers = {**headers_for(superadmin), "X-Tenant-ID": other_tenant.id}
        response = await client.get("/api/budgets", headers=headers)

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_security_headers(self, client: AsyncClient):
        response = await client.get("/")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "X-Process-Time" in response.headers


class TestTenantMappingCache:

    def test_lookup_caches_hits(self, fake_redis, tenant: Tenant):
        store_tenant_mapping("subdomain", "acme", tenant.id)
        assert lookup_tenant_mapping("subdomain", "ACME") == tenant.id

        # Served from the process cache even after the KV entry disappears
        fake_redis.data.clear()
        assert lookup_tenant_mapping("subdomain", "acme") == tenant.id

    def test_misses_are_not_cached(self, fake_redis, tenant: Tenant):
        assert lookup_tenant_mapping("domain", "late.example.com") is None

        fake_redis.set("domain:late.example.com", tenant.id)
        assert lookup_tenant_mapping("domain", "late.example.com") == tenant.id

    def test_unknown_mapping_type(self):
        with pytest.raises(ValueError):
            lookup_tenant_mapping("region", "eu")
