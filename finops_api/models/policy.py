"""
Policy Model

Governance policies (tagging rules, instance restrictions, ...). The rule
engine that evaluates them runs elsewhere and writes compliance_rate back.
"""
from sqlalchemy import Column, String, Text, Boolean, Float, DateTime, ForeignKey, JSON, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from finops_api.database import Base
import enum
import uuid


class PolicyType(str, enum.Enum):
    TAGGING = "TAGGING"
    RESOURCE = "RESOURCE"
    BUDGET = "BUDGET"
    SCHEDULE = "SCHEDULE"
    SECURITY = "SECURITY"


class PolicyAction(str, enum.Enum):
    NOTIFY = "NOTIFY"
    PREVENT = "PREVENT"
    REMEDIATE = "REMEDIATE"


class PolicyStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    DRAFT = "DRAFT"
    DISABLED = "DISABLED"


class Policy(Base):
    __tablename__ = "policies"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(SQLEnum(PolicyType), nullable=False, index=True)
    rules = Column(JSON, nullable=False, default=dict)
    enforced = Column(Boolean, default=False, nullable=False)
    action = Column(SQLEnum(PolicyAction), default=PolicyAction.NOTIFY, nullable=False)
    scope = Column(JSON, nullable=False, default=dict)
    status = Column(SQLEnum(PolicyStatus), default=PolicyStatus.DRAFT, nullable=False, index=True)

    compliance_rate = Column(Float, nullable=True)
    last_evaluated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="policies")

    __table_args__ = (
        Index('idx_policy_tenant_type', 'tenant_id', 'type'),
    )

    def __repr__(self):
        return f"<Policy {self.name} (tenant={self.tenant_id})>"
