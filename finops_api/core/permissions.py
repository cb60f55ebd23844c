"""
Permission System (RBAC)

Role ladder plus named permissions.

Roles: OWNER > ADMIN > MANAGER > ANALYST > VIEWER. A user passes a role
check when their level is at least the required one. Platform superadmins
pass every role and permission check.

Named permissions ("reports:export", ...) are stored per user. OWNER and
ADMIN hold all of them implicitly.
"""
from fastapi import HTTPException, status
from finops_api.models.user import User, UserRole, role_level
from finops_api.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)

REPORTS_EXPORT = "reports:export"


class PermissionDenied(HTTPException):
    """Custom exception for permission denied errors."""

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


def check_role(user: User, required_role: UserRole) -> None:
    """
    Check if user has required role level.

    Raises PermissionDenied if user doesn't have sufficient permissions.
    """
    if not user.has_permission(required_role):
        log_security_event(
            "privilege_escalation",
            {"user_id": user.id, "tenant_id": user.tenant_id, "required_role": required_role.value},
            logger
        )
        raise PermissionDenied(
            detail=f"Requires {required_role.value} role or higher"
        )


def has_named_permission(user: User, permission: str) -> bool:
    if user.is_superadmin:
        return True
    if user.role in (UserRole.OWNER, UserRole.ADMIN):
        return True
    return permission in (user.permissions or [])


def check_permission(user: User, permission: str) -> None:
    if not has_named_permission(user, permission):
        log_security_event(
            "privilege_escalation",
            {"user_id": user.id, "tenant_id": user.tenant_id, "permission": permission},
            logger
        )
        raise PermissionDenied(detail=f"Missing permission: {permission}")


def can_modify_user(current_user: User, target_user: User) -> bool:
    """
    Check if current_user can modify target_user.

    Rules:
    - ADMIN and above can modify anyone in their tenant
    - Users can modify themselves
    - No cross-tenant modifications (enforced by the query filters)
    """
    if current_user.has_permission(UserRole.ADMIN):
        return True
    return current_user.id == target_user.id


def can_assign_role(current_user: User, role: UserRole) -> bool:
    """Nobody hands out a role above their own."""
    if current_user.is_superadmin:
        return True
    return role_level(current_user.role) >= role_level(role)
