"""
Budget Model

Spending budgets with percentage alert thresholds. Spend figures are
written by the cost ingestion side; the API reads them to compute alerts.
"""
from sqlalchemy import Column, String, Text, Float, DateTime, ForeignKey, JSON, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from finops_api.database import Base
import enum
import uuid


class BudgetPeriod(str, enum.Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class BudgetStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    EXCEEDED = "EXCEEDED"
    ARCHIVED = "ARCHIVED"


class Budget(Base):
    __tablename__ = "budgets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Float, nullable=False)
    period = Column(SQLEnum(BudgetPeriod), default=BudgetPeriod.MONTHLY, nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)

    # {"type": "tags", "filters": {"environment": "development"}}
    scope = Column(JSON, nullable=False, default=dict)
    alert_thresholds = Column(JSON, nullable=False, default=lambda: [50, 80, 100])
    alert_emails = Column(JSON, nullable=False, default=list)

    current_spend = Column(Float, default=0.0, nullable=False)
    forecasted_spend = Column(Float, default=0.0, nullable=False)

    status = Column(SQLEnum(BudgetStatus), default=BudgetStatus.ACTIVE, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="budgets")

    __table_args__ = (
        Index('idx_budget_tenant_status', 'tenant_id', 'status'),
    )

    def __repr__(self):
        return f"<Budget {self.name} (tenant={self.tenant_id})>"

    @property
    def utilization(self) -> float:
        """Current spend as a percentage of the budget amount."""
        if not self.amount:
            return 0.0
        return round(self.current_spend / self.amount * 100, 2)

    @property
    def forecast_utilization(self) -> float:
        if not self.amount:
            return 0.0
        return round(self.forecasted_spend / self.amount * 100, 2)

    def evaluate_alerts(self) -> list:
        """
        One entry per configured threshold, lowest first.

        A threshold is triggered when actual utilization reaches it and
        forecast_triggered when the forecast will.
        """
        if not self.amount:
            return []
        utilization = self.current_spend / self.amount * 100
        forecast = self.forecasted_spend / self.amount * 100
        alerts = []
        for threshold in sorted(self.alert_thresholds or []):
            alerts.append({
                "threshold": threshold,
                "triggered": utilization >= threshold,
                "forecast_triggered": forecast >= threshold,
                "amount_at_threshold": round(self.amount * threshold / 100, 2),
            })
        return alerts
