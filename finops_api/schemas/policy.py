"""
Policy Schemas

PUT takes the full document (PolicyCreate), PATCH takes PolicyPatch.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from finops_api.models.policy import PolicyType, PolicyAction, PolicyStatus


class PolicyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: PolicyType
    rules: Dict[str, Any] = {}
    enforced: bool = False
    action: PolicyAction = PolicyAction.NOTIFY
    scope: Dict[str, Any] = {}
    status: PolicyStatus = PolicyStatus.DRAFT


class PolicyPatch(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[PolicyType] = None
    rules: Optional[Dict[str, Any]] = None
    enforced: Optional[bool] = None
    action: Optional[PolicyAction] = None
    scope: Optional[Dict[str, Any]] = None
    status: Optional[PolicyStatus] = None
    compliance_rate: Optional[float] = Field(None, ge=0, le=100)


class PolicyResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    description: Optional[str]
    type: PolicyType
    rules: Dict[str, Any]
    enforced: bool
    action: PolicyAction
    scope: Dict[str, Any]
    status: PolicyStatus
    compliance_rate: Optional[float]
    last_evaluated_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PolicyListResponse(BaseModel):
    policies: list[PolicyResponse]
    total: int
    page: int
    page_size: int
