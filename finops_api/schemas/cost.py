"""
Cost Schemas

Cost record ingestion and the analysis responses under /api/costs.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from finops_api.models.cost import PricingModel
from finops_api.utils.dates import naive_utc


class CostRecordCreate(BaseModel):
    usage_date: datetime
    service: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., ge=0)
    cloud_account_id: Optional[str] = None
    region: Optional[str] = Field(None, max_length=50)
    resource_id: Optional[str] = Field(None, max_length=255)
    resource_type: Optional[str] = Field(None, max_length=100)
    team: Optional[str] = Field(None, max_length=100)
    tags: Dict[str, Any] = {}
    on_demand_cost: Optional[float] = Field(None, ge=0)
    pricing_model: PricingModel = PricingModel.ON_DEMAND
    usage_quantity: Optional[float] = Field(None, ge=0)
    usage_unit: Optional[str] = Field(None, max_length=50)
    cpu_utilization: Optional[float] = Field(None, ge=0, le=100)

    @field_validator("usage_date")
    @classmethod
    def to_naive_utc(cls, v):
        return naive_utc(v)


class CostRecordBatch(BaseModel):
    records: List[CostRecordCreate] = Field(..., min_length=1, max_length=1000)


class CostRecordBatchResponse(BaseModel):
    created: int


class CostRecordResponse(BaseModel):
    id: str
    usage_date: datetime
    service: str
    amount: float
    cloud_account_id: Optional[str]
    region: Optional[str]
    resource_id: Optional[str]
    resource_type: Optional[str]
    team: Optional[str]
    tags: Dict[str, Any]
    on_demand_cost: Optional[float]
    pricing_model: PricingModel
    usage_quantity: Optional[float]
    usage_unit: Optional[str]
    cpu_utilization: Optional[float]

    class Config:
        from_attributes = True


class CostRecordListResponse(BaseModel):
    records: List[CostRecordResponse]
    total: int
    page: int
    page_size: int


class TeamAllocation(BaseModel):
    team: str
    cost: float
    percentage: float


class AllocationResponse(BaseModel):
    start: datetime
    end: datetime
    total_cost: float
    allocated_cost: float
    unallocated_cost: float
    allocation_percentage: float
    target: float
    meets_target: bool
    by_team: List[TeamAllocation]


class ServiceCost(BaseModel):
    service: str
    cost: float
    percentage: float
    previous_cost: float
    change_percentage: Optional[float]


class CostByServiceResponse(BaseModel):
    start: datetime
    end: datetime
    total_cost: float
    services: List[ServiceCost]


class TrendPoint(BaseModel):
    period: str
    cost: float
    groups: Optional[Dict[str, float]] = None


class CostTrendResponse(BaseModel):
    start: datetime
    end: datetime
    granularity: str
    group_by: Optional[str]
    total_cost: float
    points: List[TrendPoint]


class Anomaly(BaseModel):
    id: str
    service: str
    date: str
    actual_cost: float
    expected_cost: float
    impact: float
    deviation_percentage: float
    severity: str


class AnomalyListResponse(BaseModel):
    start: datetime
    end: datetime
    anomalies: List[Anomaly]
    total: int
    total_impact: float
