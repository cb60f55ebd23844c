"""
User Model

Users belong to a tenant and carry one role from the FinOps role ladder.
Platform superadmins are the only users without a tenant.

IMPORTANT: every tenant-scoped query must filter by tenant_id.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from finops_api.database import Base
import uuid
import enum


class UserRole(str, enum.Enum):
    """
    Tenant roles, highest first.

    OWNER: Billing owner, everything ADMIN can do
    ADMIN: Manages users, policies and accounts
    MANAGER: Manages budgets and cloud accounts
    ANALYST: Records metrics and generates reports
    VIEWER: Read-only
    """
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    ANALYST = "ANALYST"
    VIEWER = "VIEWER"


ROLE_HIERARCHY = {
    UserRole.OWNER: 5,
    UserRole.ADMIN: 4,
    UserRole.MANAGER: 3,
    UserRole.ANALYST: 2,
    UserRole.VIEWER: 1,
}


def role_level(role) -> int:
    """Numeric level for a role or role name. Unknown roles rank 0."""
    try:
        return ROLE_HIERARCHY[UserRole(role)]
    except ValueError:
        return 0


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INVITED = "INVITED"
    SUSPENDED = "SUSPENDED"


class AuthProvider(str, enum.Enum):
    LOCAL = "LOCAL"
    GOOGLE = "GOOGLE"
    MICROSOFT = "MICROSOFT"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # NULL only for platform superadmins
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    # Globally unique so OAuth callbacks can find the account by email
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    picture = Column(String(512), nullable=True)

    # NULL for OAuth-only accounts
    hashed_password = Column(String(255), nullable=True)

    role = Column(SQLEnum(UserRole), default=UserRole.VIEWER, nullable=False, index=True)
    is_superadmin = Column(Boolean, default=False, nullable=False)
    permissions = Column(JSON, nullable=False, default=list)
    preferences = Column(JSON, nullable=False, default=dict)

    status = Column(SQLEnum(UserStatus), default=UserStatus.ACTIVE, nullable=False, index=True)
    email_verified = Column(Boolean, default=False, nullable=False)

    provider = Column(SQLEnum(AuthProvider), default=AuthProvider.LOCAL, nullable=False)
    provider_id = Column(String(255), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="users")

    __table_args__ = (
        Index('idx_user_tenant_status', 'tenant_id', 'status'),
        Index('idx_user_tenant_role', 'tenant_id', 'role'),
        Index('idx_user_provider', 'provider', 'provider_id'),
    )

    def __repr__(self):
        return f"<User {self.email} (tenant={self.tenant_id})>"

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def has_permission(self, required_role: UserRole) -> bool:
        """Role ladder check: OWNER > ADMIN > MANAGER > ANALYST > VIEWER."""
        if self.is_superadmin:
            return True
        return role_level(self.role) >= role_level(required_role)
