"""
Optimization Schemas

Recommendations plus the ESR, rightsizing and waste views under
/api/optimization.
"""
from pydantic import BaseModel, Field, model_validator
from typing import List, Literal, Optional
from datetime import datetime
from finops_api.models.recommendation import Level, RecommendationStatus, RecommendationType


class RecommendationCreate(BaseModel):
    type: RecommendationType
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    service: Optional[str] = Field(None, max_length=100)
    resource_id: Optional[str] = Field(None, max_length=255)
    current_cost: float = Field(..., ge=0)
    optimized_cost: float = Field(..., ge=0)
    confidence: Level = Level.MEDIUM
    effort: Level = Level.MEDIUM

    @model_validator(mode="after")
    def check_costs(self):
        if self.optimized_cost > self.current_cost:
            raise ValueError("optimized_cost must not exceed current_cost")
        return self


class RecommendationAction(BaseModel):
    action: Literal["apply", "dismiss"] = "apply"


class RecommendationResponse(BaseModel):
    id: str
    tenant_id: str
    type: RecommendationType
    title: str
    description: Optional[str]
    service: Optional[str]
    resource_id: Optional[str]
    current_cost: float
    optimized_cost: float
    savings: float
    confidence: Level
    effort: Level
    status: RecommendationStatus
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class RecommendationListResponse(BaseModel):
    recommendations: List[RecommendationResponse]
    total: int
    total_savings: float
    realized_savings: float


class RefreshResponse(BaseModel):
    created: int
    recommendations: List[RecommendationResponse]


class PricingModelBreakdown(BaseModel):
    pricing_model: str
    cost: float
    on_demand_cost: float
    savings: float


class ESRResponse(BaseModel):
    start: datetime
    end: datetime
    effective_savings_rate: float
    target: float
    meets_target: bool
    on_demand_cost: float
    actual_cost: float
    savings: float
    commitment_coverage: float
    by_pricing_model: List[PricingModelBreakdown]


class RightsizingCandidate(BaseModel):
    resource_id: str
    service: str
    resource_type: Optional[str]
    average_cpu: float
    monthly_cost: float
    estimated_savings: float
    confidence: Level


class RightsizingResponse(BaseModel):
    start: datetime
    end: datetime
    candidates: List[RightsizingCandidate]
    total_savings: float


class WasteCandidate(BaseModel):
    resource_id: str
    service: str
    resource_type: Optional[str]
    reason: str
    average_cpu: Optional[float]
    monthly_cost: float
    estimated_savings: float


class WasteResponse(BaseModel):
    start: datetime
    end: datetime
    candidates: List[WasteCandidate]
    total_savings: float
