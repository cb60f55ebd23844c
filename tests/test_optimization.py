"""
Tests for /api/optimization: recommendations, ESR, rightsizing and waste.
"""
from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from finops_api.models import CostRecord, Recommendation, Tenant, User
from finops_api.models.cost import PricingModel
from finops_api.models.recommendation import RecommendationStatus, RecommendationType

MARCH = {"start": "2024-03-01T00:00:00", "end": "2024-03-31T00:00:00"}


def _recommendation(tenant: Tenant, title: str, current: float, optimized: float, **kwargs) -> Recommendation:
    return Recommendation(
        tenant_id=tenant.id,
        type=kwargs.pop("type", RecommendationType.RIGHTSIZING),
        title=title,
        current_cost=current,
        optimized_cost=optimized,
        **kwargs
    )


@pytest.fixture
def recommendations(db, tenant: Tenant):
    items = [
        _recommendation(tenant, "Downsize web", 300.0, 150.0),
        _recommendation(tenant, "Reserve db", 1000.0, 600.0, type=RecommendationType.RESERVED_INSTANCES),
        _recommendation(tenant, "Delete old volume", 40.0, 0.0, type=RecommendationType.WASTE_REDUCTION,
                        status=RecommendationStatus.APPLIED),
    ]
    db.add_all(items)
    db.commit()
    return items


def _usage(tenant: Tenant, resource_id: str, days, amount: float, **kwargs):
    """One record per day for a resource, days counted back from now."""
    now = datetime.utcnow()
    return [
        CostRecord(tenant_id=tenant.id, usage_date=now - timedelta(days=d), service=kwargs.get("service", "EC2"),
                   resource_id=resource_id, amount=amount,
                   **{k: v for k, v in kwargs.items() if k != "service"})
        for d in days
    ]


@pytest.fixture
def usage(db, tenant: Tenant):
    db.add_all(
        _usage(tenant, "i-small", [1, 2], 10.0, cpu_utilization=10.0, resource_type="m5.large")
        + _usage(tenant, "i-half", [1, 2], 4.0, cpu_utilization=30.0)
        + _usage(tenant, "i-idle", [1, 2], 5.0, cpu_utilization=2.0)
        + _usage(tenant, "vol-unused", [1, 2], 1.0, service="EBS", usage_quantity=0.0)
        + _usage(tenant, "i-busy", [1, 2], 20.0, cpu_utilization=60.0)
    )
    db.commit()


class TestRecommendations:

    @pytest.mark.asyncio
    async def test_list_sorted_with_totals(self, client: AsyncClient, viewer: User, headers_for, recommendations):
        response = await client.get("/api/optimization/recommendations", headers=headers_for(viewer))

        assert response.status_code == 200
        data = response.json()
        assert [r["title"] for r in data["recommendations"]] == ["Reserve db", "Downsize web", "Delete old volume"]
        assert data["recommendations"][0]["savings"] == 400.0
        assert data["total_savings"] == 550.0
        assert data["realized_savings"] == 40.0

    @pytest.mark.asyncio
    async def test_filters(self, client: AsyncClient, viewer: User, headers_for, recommendations):
        by_type = await client.get(
            "/api/optimization/recommendations", params={"type": "RIGHTSIZING"}, headers=headers_for(viewer)
        )
        by_savings = await client.get(
            "/api/optimization/recommendations", params={"min_savings": 200}, headers=headers_for(viewer)
        )
        by_status = await client.get(
            "/api/optimization/recommendations", params={"status": "APPLIED"}, headers=headers_for(viewer)
        )

        assert [r["title"] for r in by_type.json()["recommendations"]] == ["Downsize web"]
        assert [r["title"] for r in by_savings.json()["recommendations"]] == ["Reserve db"]
        assert by_status.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_other_tenant_sees_nothing(self, client: AsyncClient, other_admin: User, headers_for, recommendations):
        listing = await client.get("/api/optimization/recommendations", headers=headers_for(other_admin))
        apply = await client.post(
            f"/api/optimization/recommendations/{recommendations[0].id}/apply", headers=headers_for(other_admin)
        )

        assert listing.json()["total"] == 0
        assert apply.status_code == 404

    @pytest.mark.asyncio
    async def test_manager_creates(self, client: AsyncClient, manager: User, analyst: User, headers_for):
        body = {"type": "SAVINGS_PLANS", "title": "Compute savings plan", "current_cost": 500.0,
                "optimized_cost": 380.0, "confidence": "HIGH", "effort": "LOW"}

        created = await client.post("/api/optimization/recommendations", json=body, headers=headers_for(manager))
        denied = await client.post("/api/optimization/recommendations", json=body, headers=headers_for(analyst))

        assert created.status_code == 201
        assert created.json()["savings"] == 120.0
        assert created.json()["status"] == "PENDING"
        assert denied.status_code == 403

    @pytest.mark.asyncio
    async def test_optimized_above_current_rejected(self, client: AsyncClient, manager: User, headers_for):
        response = await client.post(
            "/api/optimization/recommendations",
            json={"type": "RIGHTSIZING", "title": "Upsize", "current_cost": 10.0, "optimized_cost": 20.0},
            headers=headers_for(manager),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_apply_then_apply_again(self, client: AsyncClient, manager: User, headers_for, recommendations):
        target = recommendations[0]

        applied = await client.post(f"/api/optimization/recommendations/{target.id}/apply", headers=headers_for(manager))
        again = await client.post(f"/api/optimization/recommendations/{target.id}/apply", headers=headers_for(manager))

        assert applied.status_code == 200
        assert applied.json()["status"] == "APPLIED"
        assert applied.json()["resolved_by"] == manager.id
        assert applied.json()["resolved_at"] is not None
        assert again.status_code == 400
        assert again.json()["detail"] == "Recommendation is already APPLIED"

    @pytest.mark.asyncio
    async def test_dismiss(self, client: AsyncClient, manager: User, headers_for, recommendations):
        response = await client.post(
            f"/api/optimization/recommendations/{recommendations[1].id}/apply",
            json={"action": "dismiss"},
            headers=headers_for(manager),
        )

        assert response.json()["status"] == "DISMISSED"

    @pytest.mark.asyncio
    async def test_viewer_cannot_apply(self, client: AsyncClient, viewer: User, headers_for, recommendations):
        response = await client.post(
            f"/api/optimization/recommendations/{recommendations[0].id}/apply", headers=headers_for(viewer)
        )
        assert response.status_code == 403


class TestRefresh:

    @pytest.mark.asyncio
    async def test_generates_once(self, client: AsyncClient, manager: User, headers_for, usage, db):
        first = await client.post("/api/optimization/recommendations/refresh", headers=headers_for(manager))
        second = await client.post("/api/optimization/recommendations/refresh", headers=headers_for(manager))

        assert first.status_code == 200
        created = {(r["type"], r["resource_id"]) for r in first.json()["recommendations"]}
        assert created == {
            ("RIGHTSIZING", "i-small"),
            ("RIGHTSIZING", "i-half"),
            ("WASTE_REDUCTION", "i-idle"),
            ("WASTE_REDUCTION", "vol-unused"),
        }
        assert first.json()["created"] == 4
        assert second.json()["created"] == 0
        assert db.query(Recommendation).count() == 4

    @pytest.mark.asyncio
    async def test_dismissed_stay_dismissed(self, client: AsyncClient, manager: User, headers_for, usage):
        first = await client.post("/api/optimization/recommendations/refresh", headers=headers_for(manager))
        for recommendation in first.json()["recommendations"]:
            await client.post(
                f"/api/optimization/recommendations/{recommendation['id']}/apply",
                json={"action": "dismiss"},
                headers=headers_for(manager),
            )

        again = await client.post("/api/optimization/recommendations/refresh", headers=headers_for(manager))

        assert again.json()["created"] == 0

    @pytest.mark.asyncio
    async def test_analyst_cannot_refresh(self, client: AsyncClient, analyst: User, headers_for):
        response = await client.post("/api/optimization/recommendations/refresh", headers=headers_for(analyst))
        assert response.status_code == 403


class TestUsageOptimization:

    @pytest.mark.asyncio
    async def test_rightsizing(self, client: AsyncClient, viewer: User, headers_for, usage):
        response = await client.get("/api/optimization/rightsizing", headers=headers_for(viewer))

        data = response.json()
        assert [c["resource_id"] for c in data["candidates"]] == ["i-small", "i-half"]
        small = data["candidates"][0]
        assert small["average_cpu"] == 10.0
        assert small["monthly_cost"] == 300.0
        assert small["estimated_savings"] == 225.0
        assert small["confidence"] == "MEDIUM"
        assert small["resource_type"] == "m5.large"
        assert data["candidates"][1]["estimated_savings"] == 60.0
        assert data["total_savings"] == 285.0

    @pytest.mark.asyncio
    async def test_waste(self, client: AsyncClient, viewer: User, headers_for, usage):
        response = await client.get("/api/optimization/waste", headers=headers_for(viewer))

        candidates = {c["resource_id"]: c for c in response.json()["candidates"]}
        assert set(candidates) == {"i-idle", "vol-unused"}
        assert candidates["i-idle"]["reason"] == "idle"
        assert candidates["i-idle"]["estimated_savings"] == 150.0
        assert candidates["vol-unused"]["reason"] == "unused"
        assert candidates["vol-unused"]["average_cpu"] is None
        assert response.json()["total_savings"] == 180.0


class TestEffectiveSavingsRate:

    @pytest.mark.asyncio
    async def test_esr_and_coverage(self, client: AsyncClient, viewer: User, tenant: Tenant, headers_for, db):
        db.add_all([
            CostRecord(tenant_id=tenant.id, usage_date=datetime(2024, 3, 5), service="EC2",
                       amount=100.0, on_demand_cost=100.0, pricing_model=PricingModel.ON_DEMAND),
            CostRecord(tenant_id=tenant.id, usage_date=datetime(2024, 3, 5), service="EC2",
                       amount=60.0, on_demand_cost=100.0, pricing_model=PricingModel.RESERVED),
        ])
        db.commit()

        response = await client.get("/api/optimization/esr", params=MARCH, headers=headers_for(viewer))

        data = response.json()
        assert data["effective_savings_rate"] == 0.2
        assert data["target"] == 0.15
        assert data["meets_target"] is True
        assert data["on_demand_cost"] == 200.0
        assert data["actual_cost"] == 160.0
        assert data["savings"] == 40.0
        assert data["commitment_coverage"] == 50.0
        reserved = next(b for b in data["by_pricing_model"] if b["pricing_model"] == "RESERVED")
        assert reserved == {"pricing_model": "RESERVED", "cost": 60.0, "on_demand_cost": 100.0, "savings": 40.0}

    @pytest.mark.asyncio
    async def test_no_spend(self, client: AsyncClient, viewer: User, headers_for):
        response = await client.get("/api/optimization/esr", params=MARCH, headers=headers_for(viewer))

        assert response.json()["effective_savings_rate"] == 0.0
        assert response.json()["meets_target"] is False
