"""
User Management Endpoints

CRUD operations for users within a tenant, plus the superadmin variant
that works across tenants.

RBAC (tenant scope):
- List / get users: any member
- Create (invite) user: ADMIN+, never above the creator's own role
- Update user: ADMIN+ or self; role, status and permission changes ADMIN+
- Delete user: ADMIN+, not self, not the last OWNER/ADMIN
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from finops_api.api.deps import get_current_tenant, get_current_user, require_admin, require_superadmin
from finops_api.core.exceptions import (
    DuplicateResourceError,
    InvalidInputError,
    TenantNotFoundError,
    UserNotFoundError,
)
from finops_api.core.permissions import PermissionDenied, can_assign_role, can_modify_user, check_role
from finops_api.core.security import get_password_hash
from finops_api.database import get_db
from finops_api.models.tenant import Tenant
from finops_api.models.user import User, UserRole, UserStatus
from finops_api.schemas.user import (
    AdminUserCreate,
    AdminUserUpdate,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])
admin_router = APIRouter(prefix="/admin/users", tags=["admin"])

ADMIN_ROLES = (UserRole.OWNER, UserRole.ADMIN)


def _ensure_email_available(db: Session, email: str, exclude_id: Optional[str] = None) -> None:
    query = db.query(User).filter(User.email == email)
    if exclude_id:
        query = query.filter(User.id != exclude_id)
    if query.first():
        raise DuplicateResourceError("User with this email already exists")


def _build_user(user_data: UserCreate, tenant_id: Optional[str]) -> User:
    return User(
        tenant_id=tenant_id,
        email=user_data.email.lower(),
        name=user_data.name,
        hashed_password=get_password_hash(user_data.password) if user_data.password else None,
        role=user_data.role,
        permissions=list(user_data.permissions),
        status=UserStatus.ACTIVE if user_data.password else UserStatus.INVITED,
    )


def _is_last_admin(db: Session, user: User) -> bool:
    if user.role not in ADMIN_ROLES or not user.tenant_id:
        return False
    others = db.query(User).filter(
        User.tenant_id == user.tenant_id,
        User.id != user.id,
        User.role.in_(ADMIN_ROLES),
        User.status == UserStatus.ACTIVE
    ).count()
    return others == 0


# ============================================================================
# TENANT SCOPE
# ============================================================================

@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    role: Optional[UserRole] = Query(None),
    status_filter: Optional[UserStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    List users in current tenant.

    TENANT_ISOLATION: Automatically filtered by current tenant.
    """
    query = db.query(User).filter(User.tenant_id == tenant.id)

    if role:
        query = query.filter(User.role == role)
    if status_filter:
        query = query.filter(User.status == status_filter)

    total = query.count()

    offset = (page - 1) * page_size
    users = query.order_by(User.created_at).offset(offset).limit(page_size).all()

    logger.debug(f"Listed {len(users)} users for tenant {tenant.id}")

    return UserListResponse(
        users=users,
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """TENANT_ISOLATION: Can only access users in same tenant."""
    user = db.query(User).filter(
        User.id == user_id,
        User.tenant_id == tenant.id  # CRITICAL: Tenant isolation
    ).first()

    if not user:
        raise UserNotFoundError(user_id)

    return user


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    current_user: User = Depends(require_admin),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Create or invite a user in the current tenant.

    Without a password the user is INVITED and activates on first OAuth
    sign-in.
    """
    if not can_assign_role(current_user, user_data.role):
        raise PermissionDenied(detail="Cannot assign a role above your own")

    _ensure_email_available(db, user_data.email.lower())

    new_user = _build_user(user_data, tenant.id)

    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    logger.info(f"User created: {new_user.id} ({new_user.status.value}) by {current_user.id}")

    return new_user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    user_data: UserUpdate,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Update user information.

    SECURITY: Nobody changes their own role, and nobody grants or touches
    a role above their own.
    """
    user = db.query(User).filter(
        User.id == user_id,
        User.tenant_id == tenant.id  # CRITICAL
    ).first()

    if not user:
        raise UserNotFoundError(user_id)

    if not can_modify_user(current_user, user):
        raise PermissionDenied(detail="Not authorized to modify this user")

    update_data = user_data.model_dump(exclude_unset=True)

    if "role" in update_data and update_data["role"] != user.role:
        if user.id == current_user.id and not current_user.is_superadmin:
            raise PermissionDenied(detail="Users cannot change their own role")
        check_role(current_user, UserRole.ADMIN)
        if not can_assign_role(current_user, update_data["role"]) or not can_assign_role(current_user, user.role):
            raise PermissionDenied(detail="Cannot manage a role above your own")
        if update_data["role"] not in ADMIN_ROLES and _is_last_admin(db, user):
            raise InvalidInputError("Cannot demote the last owner or admin")

    if "status" in update_data or "permissions" in update_data:
        check_role(current_user, UserRole.ADMIN)

    for field, value in update_data.items():
        if value is None and field in ("role", "status", "permissions", "preferences"):
            continue
        setattr(user, field, value)

    db.commit()
    db.refresh(user)

    logger.info(f"User updated: {user.id} by {current_user.id}")

    return user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    current_user: User = Depends(require_admin),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Delete user from tenant.

    CAUTION: This is a hard delete. Reports keep existing with created_by
    cleared; the user's chat messages are removed.
    """
    user = db.query(User).filter(
        User.id == user_id,
        User.tenant_id == tenant.id  # CRITICAL
    ).first()

    if not user:
        raise UserNotFoundError(user_id)

    if user.id == current_user.id:
        raise InvalidInputError("Cannot delete your own account")

    if not can_assign_role(current_user, user.role):
        raise PermissionDenied(detail="Cannot manage a role above your own")

    if _is_last_admin(db, user):
        raise InvalidInputError("Cannot delete the last owner or admin")

    db.delete(user)
    db.commit()

    logger.info(f"User deleted: {user_id} by {current_user.id}")

    return None


# ============================================================================
# SUPERADMIN
# ============================================================================

@admin_router.get("", response_model=UserListResponse)
async def admin_list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    tenant_id: Optional[str] = Query(None),
    role: Optional[UserRole] = Query(None),
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    query = db.query(User)
    if tenant_id:
        query = query.filter(User.tenant_id == tenant_id)
    if role:
        query = query.filter(User.role == role)

    total = query.count()
    offset = (page - 1) * page_size
    users = query.order_by(User.created_at).offset(offset).limit(page_size).all()

    return UserListResponse(
        users=users,
        total=total,
        page=page,
        page_size=page_size
    )


@admin_router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def admin_create_user(
    user_data: AdminUserCreate,
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    """Create a user in any tenant. Only superadmins may be tenantless."""
    if user_data.tenant_id:
        if not db.query(Tenant).filter(Tenant.id == user_data.tenant_id).first():
            raise TenantNotFoundError(user_data.tenant_id)
    elif not user_data.is_superadmin:
        raise InvalidInputError("tenant_id is required for non-superadmin users")

    _ensure_email_available(db, user_data.email.lower())

    new_user = _build_user(user_data, user_data.tenant_id)
    new_user.is_superadmin = user_data.is_superadmin

    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    logger.info(f"User created by superadmin: {new_user.id} in tenant {new_user.tenant_id}")

    return new_user


@admin_router.put("/{user_id}", response_model=UserResponse)
async def admin_update_user(
    user_id: str,
    user_data: AdminUserUpdate,
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UserNotFoundError(user_id)

    update_data = user_data.model_dump(exclude_unset=True)

    if update_data.get("email"):
        update_data["email"] = update_data["email"].lower()
        _ensure_email_available(db, update_data["email"], exclude_id=user.id)
    if update_data.get("tenant_id"):
        if not db.query(Tenant).filter(Tenant.id == update_data["tenant_id"]).first():
            raise TenantNotFoundError(update_data["tenant_id"])
    if "password" in update_data:
        password = update_data.pop("password")
        if password:
            user.hashed_password = get_password_hash(password)

    for field, value in update_data.items():
        if value is None and field != "tenant_id":
            continue
        setattr(user, field, value)

    if not user.tenant_id and not user.is_superadmin:
        raise InvalidInputError("Non-superadmin users must belong to a tenant")

    db.commit()
    db.refresh(user)

    logger.info(f"User updated by superadmin: {user.id} by {current_user.id}")

    return user


@admin_router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def admin_delete_user(
    user_id: str,
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UserNotFoundError(user_id)
    if user.id == current_user.id:
        raise InvalidInputError("Cannot delete your own account")

    db.delete(user)
    db.commit()

    logger.info(f"User deleted by superadmin: {user_id} by {current_user.id}")

    return None
