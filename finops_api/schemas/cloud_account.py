"""
Cloud Account Schemas

Credentials are accepted on input but never appear in a response model.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from finops_api.models.cloud_account import CloudProvider, CloudAccountStatus


class CloudAccountCreate(BaseModel):
    provider: CloudProvider
    account_id: str = Field(..., min_length=1, max_length=255)
    account_name: str = Field(..., min_length=1, max_length=255)
    credentials: Dict[str, Any] = {}
    regions: List[str] = []
    services: List[str] = []


class CloudAccountUpdate(BaseModel):
    account_name: Optional[str] = Field(None, min_length=1, max_length=255)
    credentials: Optional[Dict[str, Any]] = None
    regions: Optional[List[str]] = None
    services: Optional[List[str]] = None
    status: Optional[CloudAccountStatus] = None


class CloudAccountResponse(BaseModel):
    id: str
    tenant_id: str
    provider: CloudProvider
    account_id: str
    account_name: str
    regions: List[str]
    services: List[str]
    status: CloudAccountStatus
    last_sync_at: Optional[datetime]
    last_error: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CloudAccountListResponse(BaseModel):
    cloud_accounts: list[CloudAccountResponse]
    total: int
    page: int
    page_size: int


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
