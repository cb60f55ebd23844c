"""
Cloud Account Endpoints

Connect and manage AWS / Azure / GCP billing accounts.

RBAC:
- List / get: any member
- Connect, update, sync: MANAGER+
- Delete: ADMIN+

SECURITY: credentials are write-only. No response model includes them.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from finops_api.api.deps import get_current_tenant, get_current_user, require_admin, require_role
from finops_api.core.exceptions import CloudAccountNotFoundError, DuplicateResourceError, InvalidInputError
from finops_api.database import get_db
from finops_api.models.cloud_account import (
    CloudAccount,
    CloudAccountStatus,
    CloudProvider,
    check_credentials,
)
from finops_api.models.tenant import Tenant
from finops_api.models.user import User, UserRole
from finops_api.schemas.cloud_account import (
    CloudAccountCreate,
    CloudAccountListResponse,
    CloudAccountResponse,
    CloudAccountUpdate,
    ConnectionTestResponse,
)
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/cloud-accounts", tags=["cloud-accounts"])


def _get_account(db: Session, tenant: Tenant, account_id: str) -> CloudAccount:
    account = db.query(CloudAccount).filter(
        CloudAccount.id == account_id,
        CloudAccount.tenant_id == tenant.id  # CRITICAL
    ).first()
    if not account:
        raise CloudAccountNotFoundError(account_id)
    return account


@router.get("", response_model=CloudAccountListResponse)
async def list_cloud_accounts(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    provider: Optional[CloudProvider] = Query(None),
    status_filter: Optional[CloudAccountStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    query = db.query(CloudAccount).filter(CloudAccount.tenant_id == tenant.id)
    if provider:
        query = query.filter(CloudAccount.provider == provider)
    if status_filter:
        query = query.filter(CloudAccount.status == status_filter)

    total = query.count()
    offset = (page - 1) * page_size
    accounts = query.order_by(CloudAccount.created_at.desc()).offset(offset).limit(page_size).all()

    return CloudAccountListResponse(
        cloud_accounts=accounts,
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/{account_id}", response_model=CloudAccountResponse)
async def get_cloud_account(
    account_id: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return _get_account(db, tenant, account_id)


@router.post("/connect", response_model=CloudAccountResponse, status_code=status.HTTP_201_CREATED)
async def connect_cloud_account(
    account_data: CloudAccountCreate,
    current_user: User = Depends(require_role(UserRole.MANAGER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Connect a cloud account.

    The account starts PENDING; the first successful sync activates it.
    """
    ok, message = check_credentials(account_data.provider, account_data.credentials)
    if not ok:
        raise InvalidInputError(message)

    existing = db.query(CloudAccount).filter(
        CloudAccount.tenant_id == tenant.id,
        CloudAccount.provider == account_data.provider,
        CloudAccount.account_id == account_data.account_id
    ).first()
    if existing:
        raise DuplicateResourceError(
            f"{account_data.provider.value} account {account_data.account_id} is already connected"
        )

    account = CloudAccount(
        tenant_id=tenant.id,
        **account_data.model_dump()
    )

    db.add(account)
    db.commit()
    db.refresh(account)

    logger.info(f"Cloud account connected: {account.id} ({account.provider.value}) by {current_user.id}")

    return account


@router.put("/{account_id}", response_model=CloudAccountResponse)
async def update_cloud_account(
    account_id: str,
    account_data: CloudAccountUpdate,
    current_user: User = Depends(require_role(UserRole.MANAGER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    account = _get_account(db, tenant, account_id)

    update_data = account_data.model_dump(exclude_unset=True)
    if update_data.get("credentials") is not None:
        ok, message = check_credentials(account.provider, update_data["credentials"])
        if not ok:
            raise InvalidInputError(message)

    for field, value in update_data.items():
        if value is None:
            continue
        setattr(account, field, value)

    db.commit()
    db.refresh(account)

    logger.info(f"Cloud account updated: {account.id} by {current_user.id}")

    return account


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_cloud_account(
    account_id: str,
    current_user: User = Depends(require_admin),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    account = _get_account(db, tenant, account_id)

    db.delete(account)
    db.commit()

    logger.info(f"Cloud account deleted: {account_id} by {current_user.id}")

    return None


@router.post("/{account_id}/test", response_model=ConnectionTestResponse)
async def test_cloud_account(
    account_id: str,
    current_user: User = Depends(require_role(UserRole.MANAGER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Check the stored credentials. Nothing is persisted."""
    account = _get_account(db, tenant, account_id)
    ok, message = check_credentials(account.provider, account.credentials)
    return ConnectionTestResponse(success=ok, message=message)


@router.post("/{account_id}/sync", response_model=CloudAccountResponse)
async def sync_cloud_account(
    account_id: str,
    current_user: User = Depends(require_role(UserRole.MANAGER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Mark a sync.

    Valid credentials activate the account and stamp last_sync_at;
    invalid ones put it in ERROR with the reason in last_error.
    """
    account = _get_account(db, tenant, account_id)
    ok, message = check_credentials(account.provider, account.credentials)

    if ok:
        account.status = CloudAccountStatus.ACTIVE
        account.last_sync_at = datetime.utcnow()
        account.last_error = None
    else:
        account.status = CloudAccountStatus.ERROR
        account.last_error = message
        logger.warning(f"Cloud account sync failed: {account.id}: {message}")

    db.commit()
    db.refresh(account)

    return account
