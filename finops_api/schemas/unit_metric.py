"""
Unit Metric Schemas
"""
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from finops_api.models.unit_metric import MetricTrend, MetricPeriod
from finops_api.utils.dates import naive_utc


class UnitMetricCreate(BaseModel):
    """metric_type comes from the path."""
    metric_name: Optional[str] = Field(None, max_length=255)
    value: float
    unit: str = Field("USD", max_length=20)
    date: Optional[datetime] = None
    period: MetricPeriod = MetricPeriod.MONTHLY
    dimensions: Dict[str, Any] = {}

    @field_validator("date")
    @classmethod
    def to_naive_utc(cls, v):
        return naive_utc(v)


class UnitMetricResponse(BaseModel):
    id: str
    tenant_id: str
    metric_type: str
    metric_name: str
    value: float
    unit: str
    previous_value: Optional[float]
    trend: MetricTrend
    change_percentage: Optional[float]
    date: datetime
    period: MetricPeriod
    dimensions: Dict[str, Any]
    created_at: datetime

    class Config:
        from_attributes = True


class UnitMetricLatestResponse(BaseModel):
    metrics: List[UnitMetricResponse]


class UnitMetricHistoryResponse(BaseModel):
    metric_type: str
    history: List[UnitMetricResponse]
