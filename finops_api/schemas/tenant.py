"""
Tenant Schemas

Request/response models for tenant management and tenant settings.
"""
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Any, Dict, Optional
from datetime import datetime
from finops_api.models.tenant import TenantStatus, TenantPlan, MaturityLevel
from finops_api.utils.dates import naive_utc

SLUG_PATTERN = "^[a-z0-9][a-z0-9-]*$"
COLOR_PATTERN = "^#[0-9a-fA-F]{6}$"
THEME_PATTERN = "^(light|dark)$"


class TenantCreate(BaseModel):
    """Slug and subdomain default to a slug of the name."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=100, pattern=SLUG_PATTERN)
    subdomain: Optional[str] = Field(None, max_length=63, pattern=SLUG_PATTERN)
    custom_domain: Optional[str] = Field(None, max_length=255)
    admin_email: EmailStr
    status: TenantStatus = TenantStatus.TRIAL
    plan: TenantPlan = TenantPlan.TRIAL
    trial_ends_at: Optional[datetime] = None
    maturity_level: MaturityLevel = MaturityLevel.CRAWL
    focus_enabled: bool = True
    allocation_target: float = Field(80.0, ge=0, le=100)
    esr_target: float = Field(0.15, ge=0, le=1)
    settings: Optional[Dict[str, Any]] = None
    logo_url: Optional[str] = Field(None, max_length=512)
    primary_color: str = Field("#2563eb", pattern=COLOR_PATTERN)
    theme: str = Field("dark", pattern=THEME_PATTERN)
    rate_limit_per_minute: Optional[int] = Field(None, gt=0)

    @field_validator("trial_ends_at")
    @classmethod
    def to_naive_utc(cls, v):
        return naive_utc(v)


class TenantUpdate(BaseModel):
    """Schema for updating a tenant. All fields optional."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=100, pattern=SLUG_PATTERN)
    subdomain: Optional[str] = Field(None, max_length=63, pattern=SLUG_PATTERN)
    custom_domain: Optional[str] = Field(None, max_length=255)
    admin_email: Optional[EmailStr] = None
    status: Optional[TenantStatus] = None
    plan: Optional[TenantPlan] = None
    trial_ends_at: Optional[datetime] = None
    maturity_level: Optional[MaturityLevel] = None
    focus_enabled: Optional[bool] = None
    allocation_target: Optional[float] = Field(None, ge=0, le=100)
    esr_target: Optional[float] = Field(None, ge=0, le=1)
    settings: Optional[Dict[str, Any]] = None
    logo_url: Optional[str] = Field(None, max_length=512)
    primary_color: Optional[str] = Field(None, pattern=COLOR_PATTERN)
    theme: Optional[str] = Field(None, pattern=THEME_PATTERN)
    rate_limit_per_minute: Optional[int] = Field(None, gt=0)

    @field_validator("trial_ends_at")
    @classmethod
    def to_naive_utc(cls, v):
        return naive_utc(v)


class TenantResponse(BaseModel):
    id: str
    name: str
    slug: str
    subdomain: str
    custom_domain: Optional[str]
    admin_email: str
    status: TenantStatus
    plan: TenantPlan
    trial_ends_at: Optional[datetime]
    maturity_level: MaturityLevel
    focus_enabled: bool
    allocation_target: float
    esr_target: float
    settings: Dict[str, Any]
    logo_url: Optional[str]
    primary_color: str
    theme: str
    rate_limit_per_minute: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TenantListResponse(BaseModel):
    tenants: list[TenantResponse]
    total: int
    page: int
    page_size: int


class TenantSettingsResponse(BaseModel):
    """Branding and preferences visible to every tenant member."""
    id: str
    name: str
    settings: Dict[str, Any]
    logo_url: Optional[str]
    primary_color: str
    theme: str

    class Config:
        from_attributes = True


class TenantSettingsUpdate(BaseModel):
    """settings is merged into the stored settings, not replaced."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    settings: Optional[Dict[str, Any]] = None
    logo_url: Optional[str] = Field(None, max_length=512)
    primary_color: Optional[str] = Field(None, pattern=COLOR_PATTERN)
    theme: Optional[str] = Field(None, pattern=THEME_PATTERN)


class BudgetSummary(BaseModel):
    count: int
    total_amount: float
    total_spend: float
    utilization: float
    over_budget: int


class PolicySummary(BaseModel):
    total: int
    active: int
    enforced: int
    average_compliance: Optional[float]


class CloudAccountSummary(BaseModel):
    total: int
    by_status: Dict[str, int]


class UserSummary(BaseModel):
    total: int
    active: int


class TenantSummaryResponse(BaseModel):
    """Dashboard summary for the current tenant."""
    tenant_id: str
    name: str
    maturity_level: MaturityLevel
    budgets: BudgetSummary
    policies: PolicySummary
    cloud_accounts: CloudAccountSummary
    users: UserSummary
