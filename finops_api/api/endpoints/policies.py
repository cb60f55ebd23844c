"""
Policy Endpoints

Governance policies. Reading is open to every member, changes need ADMIN.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from finops_api.api.deps import get_current_tenant, get_current_user, require_admin
from finops_api.core.exceptions import PolicyNotFoundError
from finops_api.database import get_db
from finops_api.models.policy import Policy, PolicyStatus, PolicyType
from finops_api.models.tenant import Tenant
from finops_api.models.user import User
from finops_api.schemas.policy import PolicyCreate, PolicyListResponse, PolicyPatch, PolicyResponse
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/policies", tags=["policies"])


def _get_policy(db: Session, tenant: Tenant, policy_id: str) -> Policy:
    policy = db.query(Policy).filter(
        Policy.id == policy_id,
        Policy.tenant_id == tenant.id  # CRITICAL
    ).first()
    if not policy:
        raise PolicyNotFoundError(policy_id)
    return policy


@router.get("", response_model=PolicyListResponse)
async def list_policies(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    policy_type: Optional[PolicyType] = Query(None, alias="type"),
    status_filter: Optional[PolicyStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    query = db.query(Policy).filter(Policy.tenant_id == tenant.id)
    if policy_type:
        query = query.filter(Policy.type == policy_type)
    if status_filter:
        query = query.filter(Policy.status == status_filter)

    total = query.count()
    offset = (page - 1) * page_size
    policies = query.order_by(Policy.created_at.desc()).offset(offset).limit(page_size).all()

    return PolicyListResponse(
        policies=policies,
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/{policy_id}", response_model=PolicyResponse)
async def get_policy(
    policy_id: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return _get_policy(db, tenant, policy_id)


@router.post("", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    policy_data: PolicyCreate,
    current_user: User = Depends(require_admin),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    policy = Policy(
        tenant_id=tenant.id,
        **policy_data.model_dump()
    )

    db.add(policy)
    db.commit()
    db.refresh(policy)

    logger.info(f"Policy created: {policy.id} ({policy.type.value}) by {current_user.id}")

    return policy


@router.put("/{policy_id}", response_model=PolicyResponse)
async def replace_policy(
    policy_id: str,
    policy_data: PolicyCreate,
    current_user: User = Depends(require_admin),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Full update: omitted optional fields fall back to their defaults."""
    policy = _get_policy(db, tenant, policy_id)

    for field, value in policy_data.model_dump().items():
        setattr(policy, field, value)

    db.commit()
    db.refresh(policy)

    logger.info(f"Policy replaced: {policy.id} by {current_user.id}")

    return policy


@router.patch("/{policy_id}", response_model=PolicyResponse)
async def update_policy(
    policy_id: str,
    policy_data: PolicyPatch,
    current_user: User = Depends(require_admin),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    policy = _get_policy(db, tenant, policy_id)

    update_data = policy_data.model_dump(exclude_unset=True)
    if update_data.get("compliance_rate") is not None:
        policy.last_evaluated_at = datetime.utcnow()

    for field, value in update_data.items():
        if value is None and field not in ("description", "compliance_rate"):
            continue
        setattr(policy, field, value)

    db.commit()
    db.refresh(policy)

    logger.info(f"Policy updated: {policy.id} by {current_user.id}")

    return policy


@router.delete("/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_policy(
    policy_id: str,
    current_user: User = Depends(require_admin),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    policy = _get_policy(db, tenant, policy_id)

    db.delete(policy)
    db.commit()

    logger.info(f"Policy deleted: {policy_id} by {current_user.id}")

    return None
