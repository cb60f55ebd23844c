"""
Unit Metric Model

Unit economics such as cost per customer or cost per transaction. Each
row is one observation; the trend fields compare it to the previous
observation of the same metric type.
"""
from sqlalchemy import Column, String, Float, DateTime, ForeignKey, JSON, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Optional
from finops_api.database import Base
import enum
import uuid


class MetricTrend(str, enum.Enum):
    UP = "UP"
    DOWN = "DOWN"
    STABLE = "STABLE"


class MetricPeriod(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


# Changes smaller than this (in percent) count as STABLE
STABLE_CHANGE_PERCENT = 0.5


def compute_trend(value: float, previous_value: Optional[float]):
    """Return (change_percentage, trend) for a new observation."""
    if previous_value is None or previous_value == 0:
        return None, MetricTrend.STABLE
    change = round((value - previous_value) / previous_value * 100, 2)
    if abs(change) < STABLE_CHANGE_PERCENT:
        return change, MetricTrend.STABLE
    return change, MetricTrend.UP if change > 0 else MetricTrend.DOWN


class UnitMetric(Base):
    __tablename__ = "unit_metrics"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    metric_type = Column(String(100), nullable=False)  # cost_per_customer, ...
    metric_name = Column(String(255), nullable=False)
    value = Column(Float, nullable=False)
    unit = Column(String(20), default="USD", nullable=False)

    previous_value = Column(Float, nullable=True)
    trend = Column(SQLEnum(MetricTrend), default=MetricTrend.STABLE, nullable=False)
    change_percentage = Column(Float, nullable=True)

    date = Column(DateTime, default=datetime.utcnow, nullable=False)
    period = Column(SQLEnum(MetricPeriod), default=MetricPeriod.MONTHLY, nullable=False)
    dimensions = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="unit_metrics")

    __table_args__ = (
        Index('idx_unit_metric_tenant_type_date', 'tenant_id', 'metric_type', 'date'),
    )

    def __repr__(self):
        return f"<UnitMetric {self.metric_type}={self.value} (tenant={self.tenant_id})>"
