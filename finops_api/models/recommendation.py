"""
Recommendation Model

Cost optimization opportunities. Generated from cost data (rightsizing,
waste) or entered by hand, then applied or dismissed by a manager.
"""
from sqlalchemy import Column, String, Text, Float, DateTime, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from finops_api.database import Base
import enum
import uuid


class RecommendationType(str, enum.Enum):
    RIGHTSIZING = "RIGHTSIZING"
    RESERVED_INSTANCES = "RESERVED_INSTANCES"
    SAVINGS_PLANS = "SAVINGS_PLANS"
    WASTE_REDUCTION = "WASTE_REDUCTION"
    SCHEDULING = "SCHEDULING"


class RecommendationStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPLIED = "APPLIED"
    DISMISSED = "DISMISSED"


class Level(str, enum.Enum):
    """Confidence and effort scale."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Recommendation(Base):
    __tablename__ = "recommendations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    type = Column(SQLEnum(RecommendationType), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    service = Column(String(100), nullable=True)
    resource_id = Column(String(255), nullable=True)

    # Monthly figures
    current_cost = Column(Float, default=0.0, nullable=False)
    optimized_cost = Column(Float, default=0.0, nullable=False)

    confidence = Column(SQLEnum(Level), default=Level.MEDIUM, nullable=False)
    effort = Column(SQLEnum(Level), default=Level.MEDIUM, nullable=False)

    status = Column(SQLEnum(RecommendationStatus), default=RecommendationStatus.PENDING, nullable=False)
    resolved_by = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="recommendations")

    __table_args__ = (
        Index('idx_recommendation_tenant_status', 'tenant_id', 'status'),
    )

    def __repr__(self):
        return f"<Recommendation {self.type} {self.title} (tenant={self.tenant_id})>"

    @property
    def savings(self) -> float:
        return round(max(self.current_cost - self.optimized_cost, 0.0), 2)
