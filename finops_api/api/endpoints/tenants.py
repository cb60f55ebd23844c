"""
Tenant Endpoints

Two routers:
- router: the current tenant as seen by its members (/api/tenants)
- admin_router: platform tenant management for superadmins (/api/admin/tenants)

Subdomain and custom domain mappings in the KV store follow every create,
update and delete so TenantMiddleware resolves hosts without a DB query.
"""
import re
from typing import Optional

import redis
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from finops_api.api.deps import get_current_tenant, get_current_user, require_admin, require_superadmin
from finops_api.core.exceptions import DuplicateResourceError, InvalidInputError, TenantIsolationError, TenantNotFoundError
from finops_api.core.kv import remove_tenant_mapping, store_tenant_mapping
from finops_api.core.storage import ReportStorage, get_report_storage
from finops_api.database import get_db
from finops_api.models.budget import Budget
from finops_api.models.cloud_account import CloudAccount
from finops_api.models.policy import Policy, PolicyStatus
from finops_api.models.report import Report
from finops_api.models.tenant import DEFAULT_TENANT_SETTINGS, Tenant, TenantStatus
from finops_api.models.user import User, UserStatus
from finops_api.schemas.tenant import (
    BudgetSummary,
    CloudAccountSummary,
    PolicySummary,
    TenantCreate,
    TenantListResponse,
    TenantResponse,
    TenantSettingsResponse,
    TenantSettingsUpdate,
    TenantSummaryResponse,
    TenantUpdate,
    UserSummary,
)
from finops_api.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

router = APIRouter(prefix="/tenants", tags=["tenants"])
admin_router = APIRouter(prefix="/admin/tenants", tags=["admin"])


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:100]


def _check_unique(
    db: Session,
    slug: Optional[str] = None,
    subdomain: Optional[str] = None,
    custom_domain: Optional[str] = None,
    exclude_id: Optional[str] = None
) -> None:
    checks = [
        ("slug", Tenant.slug, slug),
        ("subdomain", Tenant.subdomain, subdomain),
        ("custom domain", Tenant.custom_domain, custom_domain),
    ]
    for label, column, value in checks:
        if not value:
            continue
        query = db.query(Tenant).filter(column == value)
        if exclude_id:
            query = query.filter(Tenant.id != exclude_id)
        if query.first():
            raise DuplicateResourceError(f"Tenant {label} already exists: {value}")


def _sync_mappings(
    tenant: Tenant,
    old_subdomain: Optional[str] = None,
    old_custom_domain: Optional[str] = None
) -> None:
    """
    Write current domain mappings and drop stale ones.

    KV failures are logged, not raised: the DB write already happened and
    the middleware falls back to matching the subdomain directly.
    """
    try:
        if old_subdomain and old_subdomain != tenant.subdomain:
            remove_tenant_mapping("subdomain", old_subdomain)
        if old_custom_domain and old_custom_domain != tenant.custom_domain:
            remove_tenant_mapping("domain", old_custom_domain)
        store_tenant_mapping("subdomain", tenant.subdomain, tenant.id)
        if tenant.custom_domain:
            store_tenant_mapping("domain", tenant.custom_domain, tenant.id)
    except redis.RedisError as e:
        logger.error(f"Failed to sync domain mappings for tenant {tenant.id}: {e}")


def _remove_mappings(tenant: Tenant) -> None:
    try:
        remove_tenant_mapping("subdomain", tenant.subdomain)
        if tenant.custom_domain:
            remove_tenant_mapping("domain", tenant.custom_domain)
    except redis.RedisError as e:
        logger.error(f"Failed to remove domain mappings for tenant {tenant.id}: {e}")


def _ensure_own_tenant(tenant_id: str, tenant: Tenant, current_user: User) -> None:
    if tenant_id != tenant.id:
        log_security_event(
            "tenant_isolation_violation",
            {"user_id": current_user.id, "request_tenant": tenant.id, "target_tenant": tenant_id},
            logger
        )
        raise TenantIsolationError("Access to another tenant is not allowed")


# ============================================================================
# TENANT MEMBERS
# ============================================================================

@router.get("/current/summary", response_model=TenantSummaryResponse)
async def get_current_summary(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Dashboard summary: budgets, policies, cloud accounts and users."""
    budget_count, total_amount, total_spend = db.query(
        func.count(Budget.id),
        func.coalesce(func.sum(Budget.amount), 0.0),
        func.coalesce(func.sum(Budget.current_spend), 0.0)
    ).filter(Budget.tenant_id == tenant.id).one()
    over_budget = db.query(Budget).filter(
        Budget.tenant_id == tenant.id,
        Budget.current_spend > Budget.amount
    ).count()

    policy_query = db.query(Policy).filter(Policy.tenant_id == tenant.id)
    average_compliance = db.query(func.avg(Policy.compliance_rate)).filter(
        Policy.tenant_id == tenant.id,
        Policy.compliance_rate.isnot(None)
    ).scalar()

    status_counts = db.query(CloudAccount.status, func.count(CloudAccount.id)).filter(
        CloudAccount.tenant_id == tenant.id
    ).group_by(CloudAccount.status).all()
    by_status = {account_status.value: count for account_status, count in status_counts}

    user_query = db.query(User).filter(User.tenant_id == tenant.id)

    return TenantSummaryResponse(
        tenant_id=tenant.id,
        name=tenant.name,
        maturity_level=tenant.maturity_level,
        budgets=BudgetSummary(
            count=budget_count,
            total_amount=round(total_amount, 2),
            total_spend=round(total_spend, 2),
            utilization=round(total_spend / total_amount * 100, 2) if total_amount else 0.0,
            over_budget=over_budget
        ),
        policies=PolicySummary(
            total=policy_query.count(),
            active=policy_query.filter(Policy.status == PolicyStatus.ACTIVE).count(),
            enforced=policy_query.filter(Policy.enforced.is_(True)).count(),
            average_compliance=round(average_compliance, 2) if average_compliance is not None else None
        ),
        cloud_accounts=CloudAccountSummary(
            total=sum(by_status.values()),
            by_status=by_status
        ),
        users=UserSummary(
            total=user_query.count(),
            active=user_query.filter(User.status == UserStatus.ACTIVE).count()
        )
    )


@router.get("/{tenant_id}", response_model=TenantResponse)
async def get_tenant(
    tenant_id: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant)
):
    """Members can read their own tenant only."""
    _ensure_own_tenant(tenant_id, tenant, current_user)
    return tenant


@router.get("/{tenant_id}/settings", response_model=TenantSettingsResponse)
async def get_tenant_settings(
    tenant_id: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant)
):
    _ensure_own_tenant(tenant_id, tenant, current_user)
    return tenant


@router.put("/{tenant_id}/settings", response_model=TenantSettingsResponse)
async def update_tenant_settings(
    tenant_id: str,
    settings_data: TenantSettingsUpdate,
    current_user: User = Depends(require_admin),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Update branding and preferences.

    Requires ADMIN. settings keys are merged into the stored ones.
    """
    _ensure_own_tenant(tenant_id, tenant, current_user)

    db_tenant = db.query(Tenant).filter(Tenant.id == tenant.id).first()
    if not db_tenant:
        raise TenantNotFoundError(tenant_id)

    update_data = settings_data.model_dump(exclude_unset=True)
    if "settings" in update_data:
        merged = dict(db_tenant.settings or {})
        merged.update(update_data.pop("settings") or {})
        db_tenant.settings = merged
    for field, value in update_data.items():
        setattr(db_tenant, field, value)

    db.commit()
    db.refresh(db_tenant)

    logger.info(f"Tenant settings updated: {db_tenant.id} by {current_user.id}")

    return db_tenant


# ============================================================================
# SUPERADMIN
# ============================================================================

@admin_router.get("", response_model=TenantListResponse)
async def admin_list_tenants(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status_filter: Optional[TenantStatus] = Query(None, alias="status"),
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    query = db.query(Tenant)
    if status_filter:
        query = query.filter(Tenant.status == status_filter)

    total = query.count()
    offset = (page - 1) * page_size
    tenants = query.order_by(Tenant.created_at.desc()).offset(offset).limit(page_size).all()

    return TenantListResponse(
        tenants=tenants,
        total=total,
        page=page,
        page_size=page_size
    )


@admin_router.get("/{tenant_id}", response_model=TenantResponse)
async def admin_get_tenant(
    tenant_id: str,
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise TenantNotFoundError(tenant_id)
    return tenant


@admin_router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def admin_create_tenant(
    tenant_data: TenantCreate,
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    """
    Create a tenant.

    slug defaults to a slug of the name, subdomain defaults to the slug.
    """
    slug = tenant_data.slug or slugify(tenant_data.name)
    if not slug:
        raise InvalidInputError("Cannot derive a slug from this name; provide one")
    subdomain = tenant_data.subdomain or slug
    custom_domain = tenant_data.custom_domain.lower() if tenant_data.custom_domain else None

    _check_unique(db, slug=slug, subdomain=subdomain, custom_domain=custom_domain)

    data = tenant_data.model_dump(exclude={"slug", "subdomain", "custom_domain", "settings"})
    new_tenant = Tenant(
        slug=slug,
        subdomain=subdomain,
        custom_domain=custom_domain,
        settings={**DEFAULT_TENANT_SETTINGS, **(tenant_data.settings or {})},
        **data
    )

    db.add(new_tenant)
    db.commit()
    db.refresh(new_tenant)

    _sync_mappings(new_tenant)

    logger.info(f"Tenant created: {new_tenant.id} ({new_tenant.slug}) by {current_user.id}")

    return new_tenant


@admin_router.put("/{tenant_id}", response_model=TenantResponse)
async def admin_update_tenant(
    tenant_id: str,
    tenant_data: TenantUpdate,
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise TenantNotFoundError(tenant_id)

    update_data = tenant_data.model_dump(exclude_unset=True)
    if update_data.get("custom_domain"):
        update_data["custom_domain"] = update_data["custom_domain"].lower()

    _check_unique(
        db,
        slug=update_data.get("slug"),
        subdomain=update_data.get("subdomain"),
        custom_domain=update_data.get("custom_domain"),
        exclude_id=tenant.id
    )

    old_subdomain = tenant.subdomain
    old_custom_domain = tenant.custom_domain

    if "settings" in update_data:
        merged = dict(tenant.settings or {})
        merged.update(update_data.pop("settings") or {})
        tenant.settings = merged
    for field, value in update_data.items():
        if field in ("slug", "subdomain", "name", "admin_email") and value is None:
            continue
        setattr(tenant, field, value)

    db.commit()
    db.refresh(tenant)

    _sync_mappings(tenant, old_subdomain=old_subdomain, old_custom_domain=old_custom_domain)

    logger.info(f"Tenant updated: {tenant.id} by {current_user.id}")

    return tenant


@admin_router.delete("/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def admin_delete_tenant(
    tenant_id: str,
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
    storage: ReportStorage = Depends(get_report_storage)
):
    """
    Delete a tenant and everything it owns.

    CAUTION: Hard delete. Users, budgets, accounts, reports and chat history
    go with it (ON DELETE CASCADE).
    """
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise TenantNotFoundError(tenant_id)

    report_keys = [
        key for (key,) in db.query(Report.storage_key).filter(Report.tenant_id == tenant.id).all() if key
    ]

    db.delete(tenant)
    db.commit()

    _remove_mappings(tenant)
    for key in report_keys:
        storage.delete(key)

    logger.info(f"Tenant deleted: {tenant_id} by {current_user.id}")

    return None
