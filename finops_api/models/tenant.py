"""
Tenant Model

The tenant is the isolation boundary of the platform. Each tenant is a
customer organization whose users, budgets, cloud accounts and cost data
are invisible to every other tenant.

We use a shared database with a tenant_id column on every owned table.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Float, JSON, Enum as SQLEnum, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from finops_api.database import Base
import enum
import uuid


class TenantStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    TRIAL = "TRIAL"
    SUSPENDED = "SUSPENDED"
    INACTIVE = "INACTIVE"


class TenantPlan(str, enum.Enum):
    TRIAL = "TRIAL"
    STARTER = "STARTER"
    PROFESSIONAL = "PROFESSIONAL"
    ENTERPRISE = "ENTERPRISE"


class MaturityLevel(str, enum.Enum):
    """FinOps Foundation maturity model."""
    CRAWL = "CRAWL"
    WALK = "WALK"
    RUN = "RUN"


DEFAULT_TENANT_SETTINGS = {
    "currency": "USD",
    "timezone": "UTC",
    "fiscalYearStart": "JANUARY",
}


class Tenant(Base):
    __tablename__ = "tenants"

    # UUIDs avoid enumeration and stay unique across systems
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Tenant identification
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)

    # Routing: acme.finops.app or a mapped custom domain
    subdomain = Column(String(63), unique=True, nullable=False, index=True)
    custom_domain = Column(String(255), unique=True, nullable=True)

    admin_email = Column(String(255), nullable=False)

    status = Column(SQLEnum(TenantStatus), default=TenantStatus.ACTIVE, nullable=False, index=True)
    plan = Column(SQLEnum(TenantPlan), default=TenantPlan.TRIAL, nullable=False)
    trial_ends_at = Column(DateTime, nullable=True)

    # FinOps program configuration
    maturity_level = Column(SQLEnum(MaturityLevel), default=MaturityLevel.CRAWL, nullable=False)
    focus_enabled = Column(Boolean, default=True, nullable=False)
    allocation_target = Column(Float, default=80.0, nullable=False)  # % of spend allocated
    esr_target = Column(Float, default=0.15, nullable=False)  # effective savings rate

    settings = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_TENANT_SETTINGS))

    # Branding
    logo_url = Column(String(512), nullable=True)
    primary_color = Column(String(20), default="#2563eb", nullable=False)
    theme = Column(String(10), default="dark", nullable=False)  # light, dark

    # Overrides the per-role default when set
    rate_limit_per_minute = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    cloud_accounts = relationship("CloudAccount", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    budgets = relationship("Budget", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    unit_metrics = relationship("UnitMetric", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    policies = relationship("Policy", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    integrations = relationship("Integration", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    reports = relationship("Report", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    conversations = relationship("Conversation", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    cost_records = relationship("CostRecord", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    recommendations = relationship("Recommendation", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    report_schedules = relationship("ReportSchedule", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index('idx_tenant_status_subdomain', 'status', 'subdomain'),
    )

    def __repr__(self):
        return f"<Tenant {self.slug}>"

    @property
    def is_active(self) -> bool:
        """Trial tenants are usable until an operator suspends them."""
        return self.status in (TenantStatus.ACTIVE, TenantStatus.TRIAL)
