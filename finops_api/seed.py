"""
Demo Data

Creates the demo tenant with users, a cloud account, budgets, unit metrics,
policies, 30 days of cost records and a few recommendations. Safe to run
repeatedly: existing records are left alone.

Usage:
    python -m finops_api.seed

All demo users share SEED_PASSWORD (default below).
"""
import os
from datetime import datetime, timedelta

import redis

from finops_api.config import get_settings
from finops_api.core.kv import store_tenant_mapping
from finops_api.core.permissions import REPORTS_EXPORT
from finops_api.core.security import get_password_hash
from finops_api.database import SessionLocal, init_db
from finops_api.models.budget import Budget, BudgetPeriod, BudgetStatus
from finops_api.models.cloud_account import CloudAccount, CloudAccountStatus, CloudProvider
from finops_api.models.cost import CostRecord, PricingModel
from finops_api.models.policy import Policy, PolicyAction, PolicyStatus, PolicyType
from finops_api.models.recommendation import Level, Recommendation, RecommendationType
from finops_api.models.tenant import MaturityLevel, Tenant, TenantPlan, TenantStatus
from finops_api.models.unit_metric import MetricPeriod, MetricTrend, UnitMetric
from finops_api.models.user import AuthProvider, User, UserRole, UserStatus
from finops_api.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)
settings = get_settings()

DEFAULT_SEED_PASSWORD = "demo-password-123"

DEMO_USERS = [
    {"email": "admin@demo.com", "name": "Admin User", "role": UserRole.ADMIN,
     "provider": AuthProvider.GOOGLE, "provider_id": "google-admin-123"},
    {"email": "analyst@demo.com", "name": "Analyst User", "role": UserRole.ANALYST,
     "provider": AuthProvider.GOOGLE, "provider_id": "google-analyst-123", "permissions": [REPORTS_EXPORT]},
    {"email": "viewer@demo.com", "name": "Viewer User", "role": UserRole.VIEWER,
     "provider": AuthProvider.MICROSOFT, "provider_id": "ms-viewer-123"},
]

# (service, resource_id, resource_type, team, daily cost, on-demand daily cost, pricing model, avg CPU)
DEMO_RESOURCES = [
    ("EC2", "i-0prodweb01", "m5.2xlarge", "platform", 96.0, 96.0, PricingModel.ON_DEMAND, 14.0),
    ("EC2", "i-0prodapi01", "c5.xlarge", "platform", 41.0, 68.0, PricingModel.RESERVED, 58.0),
    ("EC2", "i-0batch0001", "r5.large", None, 30.0, 30.0, PricingModel.ON_DEMAND, 2.5),
    ("RDS", "db-main", "db.r5.xlarge", "data", 120.0, 150.0, PricingModel.SAVINGS_PLAN, 33.0),
    ("S3", "finops-demo-logs", "bucket", None, 18.0, 18.0, PricingModel.ON_DEMAND, None),
    ("Lambda", "ingest-worker", "function", "data", 7.5, 7.5, PricingModel.ON_DEMAND, None),
]

DEMO_COST_DAYS = 30
# EC2 web spend spikes on this many days ago
DEMO_SPIKE_DAYS_AGO = 3


def _seed_tenant(db) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.slug == "demo").first()
    if tenant:
        logger.info(f"Tenant exists: {tenant.slug}")
        return tenant

    tenant = Tenant(
        name="Demo Organization",
        slug="demo",
        subdomain="demo",
        admin_email="admin@demo.com",
        status=TenantStatus.ACTIVE,
        plan=TenantPlan.TRIAL,
        trial_ends_at=datetime.utcnow() + timedelta(days=30),
        maturity_level=MaturityLevel.CRAWL,
        focus_enabled=True,
        allocation_target=80.0,
        esr_target=0.15,
        settings={"currency": "USD", "timezone": "America/New_York", "fiscalYearStart": "JANUARY"},
    )
    db.add(tenant)
    db.flush()
    logger.info(f"Created tenant: {tenant.name}")
    return tenant


def _seed_users(db, tenant: Tenant, password_hash: str) -> None:
    if not db.query(User).filter(User.email == "superadmin@finops.app").first():
        db.add(User(
            tenant_id=None,
            email="superadmin@finops.app",
            name="Platform Admin",
            hashed_password=password_hash,
            role=UserRole.OWNER,
            is_superadmin=True,
            status=UserStatus.ACTIVE,
            email_verified=True,
        ))
        logger.info("Created superadmin: superadmin@finops.app")

    for user_data in DEMO_USERS:
        if db.query(User).filter(User.email == user_data["email"]).first():
            continue
        db.add(User(
            tenant_id=tenant.id,
            hashed_password=password_hash,
            status=UserStatus.ACTIVE,
            email_verified=True,
            preferences={"theme": "light", "notifications": True},
            **user_data
        ))
        logger.info(f"Created user: {user_data['email']} ({user_data['role'].value})")


def _seed_cloud_account(db, tenant: Tenant) -> CloudAccount:
    exists = db.query(CloudAccount).filter(
        CloudAccount.tenant_id == tenant.id,
        CloudAccount.provider == CloudProvider.AWS,
        CloudAccount.account_id == "123456789012"
    ).first()
    if exists:
        return exists

    account = CloudAccount(
        tenant_id=tenant.id,
        provider=CloudProvider.AWS,
        account_id="123456789012",
        account_name="Production AWS Account",
        credentials={"role_arn": "arn:aws:iam::123456789012:role/FinOpsRole"},
        regions=["us-east-1", "us-west-2", "eu-west-1"],
        services=["EC2", "S3", "RDS", "Lambda"],
        status=CloudAccountStatus.ACTIVE,
        last_sync_at=datetime.utcnow(),
    )
    db.add(account)
    db.flush()
    logger.info("Created cloud account: Production AWS Account")
    return account


def _seed_budgets(db, tenant: Tenant) -> None:
    now = datetime.utcnow()
    budgets = [
        Budget(
            tenant_id=tenant.id,
            name="Monthly Cloud Budget",
            description="Overall monthly cloud spending budget",
            amount=50000.0,
            period=BudgetPeriod.MONTHLY,
            start_date=datetime(now.year, now.month, 1),
            scope={"type": "all", "filters": {}},
            alert_thresholds=[50, 80, 100],
            alert_emails=["finance@demo.com", "ops@demo.com"],
            current_spend=32450.50,
            forecasted_spend=48750.25,
            status=BudgetStatus.ACTIVE,
        ),
        Budget(
            tenant_id=tenant.id,
            name="Q4 Development Budget",
            description="Development environment budget for Q4",
            amount=15000.0,
            period=BudgetPeriod.QUARTERLY,
            start_date=datetime(now.year, 10, 1),
            end_date=datetime(now.year, 12, 31),
            scope={"type": "tags", "filters": {"environment": "development"}},
            alert_thresholds=[60, 80, 95],
            alert_emails=["dev-lead@demo.com"],
            current_spend=8234.75,
            forecasted_spend=14500.00,
            status=BudgetStatus.ACTIVE,
        ),
    ]
    for budget in budgets:
        if db.query(Budget).filter(Budget.tenant_id == tenant.id, Budget.name == budget.name).first():
            continue
        db.add(budget)
        logger.info(f"Created budget: {budget.name}")


def _seed_metrics(db, tenant: Tenant) -> None:
    now = datetime.utcnow()
    metrics = [
        UnitMetric(
            tenant_id=tenant.id,
            metric_type="cost_per_customer",
            metric_name="Cost per Customer",
            value=12.50,
            unit="USD",
            previous_value=11.25,
            trend=MetricTrend.UP,
            change_percentage=11.11,
            date=now,
            period=MetricPeriod.MONTHLY,
            dimensions={"customerCount": 4000, "totalCost": 50000},
        ),
        UnitMetric(
            tenant_id=tenant.id,
            metric_type="cost_per_transaction",
            metric_name="Cost per Transaction",
            value=0.0025,
            unit="USD",
            previous_value=0.0028,
            trend=MetricTrend.DOWN,
            change_percentage=-10.71,
            date=now,
            period=MetricPeriod.DAILY,
            dimensions={"transactionCount": 2000000, "totalCost": 5000},
        ),
    ]
    for metric in metrics:
        exists = db.query(UnitMetric).filter(
            UnitMetric.tenant_id == tenant.id,
            UnitMetric.metric_type == metric.metric_type
        ).first()
        if exists:
            continue
        db.add(metric)
        logger.info(f"Created unit metric: {metric.metric_name}")


def _seed_policies(db, tenant: Tenant) -> None:
    now = datetime.utcnow()
    policies = [
        Policy(
            tenant_id=tenant.id,
            name="Mandatory Tagging Policy",
            description="All resources must have required tags",
            type=PolicyType.TAGGING,
            rules={
                "requiredTags": ["Environment", "Owner", "CostCenter", "Project"],
                "enforcement": "preventCreation",
            },
            enforced=True,
            action=PolicyAction.PREVENT,
            scope={"services": ["EC2", "RDS", "S3"], "regions": ["*"]},
            status=PolicyStatus.ACTIVE,
            compliance_rate=87.5,
            last_evaluated_at=now,
        ),
        Policy(
            tenant_id=tenant.id,
            name="Instance Type Restrictions",
            description="Limit expensive instance types in dev/test",
            type=PolicyType.RESOURCE,
            rules={
                "deniedInstanceTypes": ["*.xlarge", "*.2xlarge", "*.4xlarge"],
                "environments": ["development", "testing"],
            },
            enforced=False,
            action=PolicyAction.NOTIFY,
            scope={"services": ["EC2"], "tags": {"Environment": ["development", "testing"]}},
            status=PolicyStatus.ACTIVE,
            compliance_rate=92.3,
            last_evaluated_at=now,
        ),
    ]
    for policy in policies:
        if db.query(Policy).filter(Policy.tenant_id == tenant.id, Policy.name == policy.name).first():
            continue
        db.add(policy)
        logger.info(f"Created policy: {policy.name}")


def _seed_costs(db, tenant: Tenant, account: CloudAccount) -> None:
    if db.query(CostRecord).filter(CostRecord.tenant_id == tenant.id).first():
        return

    today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    records = []
    for days_ago in range(DEMO_COST_DAYS, 0, -1):
        day = today - timedelta(days=days_ago)
        # Weekday traffic runs a little hotter
        factor = 1.0 if day.weekday() < 5 else 0.85
        for service, resource_id, resource_type, team, cost, on_demand, pricing, cpu in DEMO_RESOURCES:
            daily_cost = cost * factor
            if resource_id == "i-0prodweb01" and days_ago == DEMO_SPIKE_DAYS_AGO:
                daily_cost *= 2.6
            records.append(CostRecord(
                tenant_id=tenant.id,
                cloud_account_id=account.id,
                usage_date=day,
                service=service,
                region="us-east-1",
                resource_id=resource_id,
                resource_type=resource_type,
                team=team,
                tags={"Environment": "production", "Team": team} if team else {},
                amount=round(daily_cost, 2),
                on_demand_cost=round(on_demand * factor, 2),
                pricing_model=pricing,
                usage_quantity=24.0 if cpu is not None else None,
                usage_unit="Hrs" if cpu is not None else None,
                cpu_utilization=cpu,
            ))
    db.add_all(records)
    logger.info(f"Created {len(records)} cost records")


def _seed_recommendations(db, tenant: Tenant) -> None:
    recommendations = [
        Recommendation(
            tenant_id=tenant.id,
            type=RecommendationType.RESERVED_INSTANCES,
            title="Reserve the production web fleet",
            description="i-0prodweb01 has run on demand around the clock for 30 days.",
            service="EC2",
            resource_id="i-0prodweb01",
            current_cost=2880.0,
            optimized_cost=1872.0,
            confidence=Level.HIGH,
            effort=Level.LOW,
        ),
        Recommendation(
            tenant_id=tenant.id,
            type=RecommendationType.SCHEDULING,
            title="Stop batch instances outside business hours",
            service="EC2",
            resource_id="i-0batch0001",
            current_cost=900.0,
            optimized_cost=360.0,
            confidence=Level.MEDIUM,
            effort=Level.MEDIUM,
        ),
    ]
    for recommendation in recommendations:
        exists = db.query(Recommendation).filter(
            Recommendation.tenant_id == tenant.id,
            Recommendation.title == recommendation.title
        ).first()
        if exists:
            continue
        db.add(recommendation)
        logger.info(f"Created recommendation: {recommendation.title}")


def seed(password: str = DEFAULT_SEED_PASSWORD) -> Tenant:
    """Create the demo data and return the demo tenant."""
    init_db()

    db = SessionLocal()
    try:
        tenant = _seed_tenant(db)
        _seed_users(db, tenant, get_password_hash(password))
        account = _seed_cloud_account(db, tenant)
        _seed_budgets(db, tenant)
        _seed_metrics(db, tenant)
        _seed_policies(db, tenant)
        _seed_costs(db, tenant, account)
        _seed_recommendations(db, tenant)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    try:
        store_tenant_mapping("subdomain", tenant.subdomain, tenant.id)
    except redis.RedisError as e:
        logger.warning(f"KV store unreachable, subdomain mapping not written: {e}")

    return tenant


def main():
    setup_logging(log_level=settings.LOG_LEVEL)
    tenant = seed(os.environ.get("SEED_PASSWORD", DEFAULT_SEED_PASSWORD))

    logger.info("Database seed completed")
    logger.info(f"Demo tenant: {tenant.slug} ({tenant.id})")
    logger.info("Demo credentials: admin@demo.com, analyst@demo.com, viewer@demo.com, superadmin@finops.app")


if __name__ == "__main__":
    main()
