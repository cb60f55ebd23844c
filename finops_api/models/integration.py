"""
Integration Model

A tenant's connection to an external data source (accounting, CRM,
commerce). Created by the admin OAuth flow.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from finops_api.database import Base
import enum
import uuid


class IntegrationStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ERROR = "ERROR"


class Integration(Base):
    __tablename__ = "integrations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    source_id = Column(String(50), nullable=False)
    source_name = Column(String(255), nullable=False)
    status = Column(SQLEnum(IntegrationStatus), default=IntegrationStatus.ACTIVE, nullable=False)

    # Token payload from the provider. Never serialized.
    credentials = Column(JSON, nullable=False, default=dict)

    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="integrations")

    __table_args__ = (
        UniqueConstraint('tenant_id', 'source_id', name='uq_integration_tenant_source'),
    )

    def __repr__(self):
        return f"<Integration {self.source_id} (tenant={self.tenant_id})>"
