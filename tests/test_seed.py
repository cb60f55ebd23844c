"""
Tests for the demo data seed.
"""
from finops_api.core.kv import KVStore, set_kv_store
from finops_api.core.security import verify_password
from finops_api.models import (
    Budget,
    CloudAccount,
    CostRecord,
    Policy,
    Recommendation,
    Tenant,
    UnitMetric,
    User,
)
from finops_api.seed import DEMO_COST_DAYS, DEMO_RESOURCES, seed

from conftest import UnavailableRedis

SEEDED_MODELS = (Tenant, User, CloudAccount, Budget, UnitMetric, Policy, CostRecord, Recommendation)


def _counts(db) -> dict:
    return {model.__name__: db.query(model).count() for model in SEEDED_MODELS}


class TestSeed:

    def test_creates_demo_data(self, db, fake_redis):
        tenant = seed("seed-password")

        assert tenant.slug == "demo"
        assert _counts(db) == {
            "Tenant": 1,
            "User": 4,
            "CloudAccount": 1,
            "Budget": 2,
            "UnitMetric": 2,
            "Policy": 2,
            "CostRecord": DEMO_COST_DAYS * len(DEMO_RESOURCES),
            "Recommendation": 2,
        }
        superadmin = db.query(User).filter(User.email == "superadmin@finops.app").one()
        assert superadmin.is_superadmin is True
        assert superadmin.tenant_id is None
        assert verify_password("seed-password", superadmin.hashed_password)

    def test_running_twice_changes_nothing(self, db, fake_redis):
        first = seed("seed-password")
        counts = _counts(db)

        second = seed("seed-password")

        assert second.id == first.id
        assert _counts(db) == counts

    def test_writes_subdomain_mapping(self, db, fake_redis):
        tenant = seed("seed-password")

        assert fake_redis.data["subdomain:demo"] == tenant.id

    def test_analyst_can_export_reports(self, db, fake_redis):
        seed("seed-password")

        analyst = db.query(User).filter(User.email == "analyst@demo.com").one()
        viewer = db.query(User).filter(User.email == "viewer@demo.com").one()
        assert analyst.permissions == ["reports:export"]
        assert viewer.permissions == []

    def test_kv_outage_does_not_fail_seed(self, db):
        set_kv_store(KVStore(UnavailableRedis()))

        tenant = seed("seed-password")

        assert db.query(Tenant).filter(Tenant.id == tenant.id).count() == 1
        assert db.query(Budget).filter(Budget.tenant_id == tenant.id).count() == 2
