"""
Cost Record Model

One row per resource per usage day, as delivered by the billing exports
(FOCUS-shaped). amount is what was billed; on_demand_cost is what the same
usage would have cost at list price, which is what effective savings are
measured against.

team is the allocation dimension: a record without a team is unallocated
spend.
"""
from sqlalchemy import Column, String, Float, DateTime, ForeignKey, JSON, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from finops_api.database import Base
import enum
import uuid


class PricingModel(str, enum.Enum):
    ON_DEMAND = "ON_DEMAND"
    RESERVED = "RESERVED"
    SAVINGS_PLAN = "SAVINGS_PLAN"
    SPOT = "SPOT"


COMMITMENT_MODELS = (PricingModel.RESERVED, PricingModel.SAVINGS_PLAN)


class CostRecord(Base):
    __tablename__ = "cost_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    cloud_account_id = Column(
        String(36),
        ForeignKey("cloud_accounts.id", ondelete="SET NULL"),
        nullable=True
    )

    usage_date = Column(DateTime, nullable=False)
    service = Column(String(100), nullable=False)
    region = Column(String(50), nullable=True)
    resource_id = Column(String(255), nullable=True)
    resource_type = Column(String(100), nullable=True)
    team = Column(String(100), nullable=True)
    tags = Column(JSON, nullable=False, default=dict)

    amount = Column(Float, nullable=False)
    on_demand_cost = Column(Float, nullable=True)
    pricing_model = Column(SQLEnum(PricingModel), default=PricingModel.ON_DEMAND, nullable=False)

    usage_quantity = Column(Float, nullable=True)
    usage_unit = Column(String(50), nullable=True)
    # Average CPU for the day, 0-100. Only compute resources report it.
    cpu_utilization = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="cost_records")

    __table_args__ = (
        Index('idx_cost_tenant_date', 'tenant_id', 'usage_date'),
        Index('idx_cost_tenant_service_date', 'tenant_id', 'service', 'usage_date'),
    )

    def __repr__(self):
        return f"<CostRecord {self.service} {self.usage_date:%Y-%m-%d} {self.amount} (tenant={self.tenant_id})>"

    @property
    def list_cost(self) -> float:
        """On-demand equivalent. Falls back to amount when the export has none."""
        return self.on_demand_cost if self.on_demand_cost is not None else self.amount
