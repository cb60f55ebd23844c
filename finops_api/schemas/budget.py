"""
Budget Schemas

Request/response models for budgets and budget alerts.
"""
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from finops_api.models.budget import BudgetPeriod, BudgetStatus
from finops_api.utils.dates import naive_utc


def _validate_thresholds(thresholds):
    if thresholds is None:
        return thresholds
    for threshold in thresholds:
        if threshold <= 0 or threshold > 1000:
            raise ValueError("Alert thresholds must be between 0 (exclusive) and 1000")
    return sorted(set(thresholds))


class BudgetCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    amount: float = Field(..., gt=0)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    start_date: datetime
    end_date: Optional[datetime] = None
    scope: Dict[str, Any] = {}
    alert_thresholds: List[float] = [50, 80, 100]
    alert_emails: List[EmailStr] = []

    @field_validator("alert_thresholds")
    @classmethod
    def check_thresholds(cls, v):
        return _validate_thresholds(v)

    @field_validator("start_date", "end_date")
    @classmethod
    def to_naive_utc(cls, v):
        return naive_utc(v)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class BudgetUpdate(BaseModel):
    """Partial update. Spend figures can be pushed by the ingestion side."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    amount: Optional[float] = Field(None, gt=0)
    period: Optional[BudgetPeriod] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    scope: Optional[Dict[str, Any]] = None
    alert_thresholds: Optional[List[float]] = None
    alert_emails: Optional[List[EmailStr]] = None
    current_spend: Optional[float] = Field(None, ge=0)
    forecasted_spend: Optional[float] = Field(None, ge=0)
    status: Optional[BudgetStatus] = None

    @field_validator("alert_thresholds")
    @classmethod
    def check_thresholds(cls, v):
        return _validate_thresholds(v)

    @field_validator("start_date", "end_date")
    @classmethod
    def to_naive_utc(cls, v):
        return naive_utc(v)


class BudgetResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    description: Optional[str]
    amount: float
    period: BudgetPeriod
    start_date: datetime
    end_date: Optional[datetime]
    scope: Dict[str, Any]
    alert_thresholds: List[float]
    alert_emails: List[str]
    current_spend: float
    forecasted_spend: float
    utilization: float
    status: BudgetStatus
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BudgetListResponse(BaseModel):
    budgets: list[BudgetResponse]
    total: int
    page: int
    page_size: int


class BudgetAlert(BaseModel):
    threshold: float
    triggered: bool
    forecast_triggered: bool
    amount_at_threshold: float


class BudgetAlertsResponse(BaseModel):
    budget_id: str
    name: str
    amount: float
    current_spend: float
    forecasted_spend: float
    utilization: float
    forecast_utilization: float
    alerts: List[BudgetAlert]
    highest_triggered: Optional[float]
    highest_forecast_triggered: Optional[float]
