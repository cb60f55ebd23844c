"""
API Dependencies

Reusable FastAPI dependencies for authentication and authorization.
Every tenant-scoped endpoint goes through get_current_user, which ties the
token and the user to the tenant resolved by TenantMiddleware.
"""
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from finops_api.config import get_settings
from finops_api.database import get_db
from finops_api.models.user import User, UserRole
from finops_api.models.tenant import Tenant
from finops_api.core.security import decode_access_token
from finops_api.core.exceptions import AuthenticationError, TenantIsolationError
from finops_api.core.permissions import PermissionDenied, check_role, check_permission
from finops_api.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)
settings = get_settings()

# auto_error=False so the cookie fallback gets a chance
security = HTTPBearer(auto_error=False)


def get_current_tenant(request: Request) -> Tenant:
    """
    Get current tenant from request state.

    This is set by TenantMiddleware and should always be present
    for tenant-scoped routes.

    CRITICAL: This is a key part of tenant isolation.
    """
    tenant = getattr(request.state, "tenant", None)
    if not tenant:
        logger.error("No tenant in request state - middleware may have failed")
        raise TenantIsolationError("Tenant context not available")
    return tenant


def get_optional_tenant(request: Request) -> Optional[Tenant]:
    return getattr(request.state, "tenant", None)


def get_request_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.AUTH_COOKIE_NAME) or None


async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(get_request_token),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user.

    This dependency:
    1. Validates the JWT (header or cookie)
    2. Loads the user and checks it is ACTIVE
    3. If a tenant was resolved, verifies token and user belong to it

    Superadmins are not bound to a tenant and skip step 3.
    """
    if not token:
        raise AuthenticationError("Not authenticated")

    payload = decode_access_token(token)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"Token for unknown user: {user_id}")
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is inactive")

    tenant = get_optional_tenant(request)
    if tenant and not user.is_superadmin:
        token_tenant_id = payload.get("tenant_id")
        # CRITICAL SECURITY CHECK: a valid token from one tenant must not work for another
        if token_tenant_id != tenant.id or user.tenant_id != tenant.id:
            log_security_event(
                "tenant_isolation_violation",
                {
                    "user_id": user.id,
                    "token_tenant": token_tenant_id,
                    "user_tenant": user.tenant_id,
                    "request_tenant": tenant.id,
                },
                logger
            )
            raise TenantIsolationError("Token tenant mismatch")

    request.state.user = user
    return user


def require_role(min_role: UserRole):
    """
    Dependency factory: user must hold min_role or higher.

    Usage:
        current_user: User = Depends(require_role(UserRole.MANAGER))
    """
    async def dependency(current_user: User = Depends(get_current_user)) -> User:
        check_role(current_user, min_role)
        return current_user

    return dependency


def require_permission(permission: str):
    """Dependency factory for named permissions."""
    async def dependency(current_user: User = Depends(get_current_user)) -> User:
        check_permission(current_user, permission)
        return current_user

    return dependency


async def require_admin(
    current_user: User = Depends(get_current_user)
) -> User:
    """Shorthand for require_role(UserRole.ADMIN)."""
    check_role(current_user, UserRole.ADMIN)
    return current_user


async def require_superadmin(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Platform operators only.

    Use this dependency for /api/admin endpoints.
    """
    if not current_user.is_superadmin:
        log_security_event(
            "privilege_escalation",
            {"user_id": current_user.id, "tenant_id": current_user.tenant_id, "required": "superadmin"},
            logger
        )
        raise PermissionDenied(detail="Superadmin privileges required")
    return current_user
