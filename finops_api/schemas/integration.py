"""
Integration Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from finops_api.models.integration import IntegrationStatus


class DataSourceResponse(BaseModel):
    id: str
    name: str
    description: str
    category: str
    auth_type: str
    status: str  # available, connected


class IntegrationResponse(BaseModel):
    id: str
    tenant_id: str
    source_id: str
    source_name: str
    status: IntegrationStatus
    last_sync_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OAuthInitiateRequest(BaseModel):
    source_id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
