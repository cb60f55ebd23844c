"""
Report Schemas
"""
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Optional
from datetime import datetime
from finops_api.models.report import ReportType, ReportFormat, ReportStatus, ScheduleFrequency
from finops_api.utils.dates import naive_utc


class ReportGenerateRequest(BaseModel):
    report_type: ReportType
    format: ReportFormat = ReportFormat.CSV
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class ReportResponse(BaseModel):
    id: str
    tenant_id: str
    created_by: Optional[str]
    name: str
    report_type: ReportType
    format: ReportFormat
    status: ReportStatus
    size_bytes: int
    file_name: str
    created_at: datetime

    class Config:
        from_attributes = True


class ReportListResponse(BaseModel):
    reports: list[ReportResponse]
    total: int
    page: int
    page_size: int


class ReportScheduleCreate(BaseModel):
    """first_run_at defaults to one period from now."""
    name: str = Field(..., min_length=1, max_length=255)
    report_type: ReportType
    format: ReportFormat = ReportFormat.CSV
    frequency: ScheduleFrequency
    recipients: List[EmailStr] = Field(..., min_length=1, max_length=50)
    first_run_at: Optional[datetime] = None

    @field_validator("first_run_at")
    @classmethod
    def to_naive_utc(cls, v):
        return naive_utc(v)


class ReportScheduleResponse(BaseModel):
    id: str
    tenant_id: str
    created_by: Optional[str]
    name: str
    report_type: ReportType
    format: ReportFormat
    frequency: ScheduleFrequency
    recipients: List[str]
    enabled: bool
    next_run_at: datetime
    last_run_at: Optional[datetime]
    last_report_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class ReportScheduleListResponse(BaseModel):
    schedules: List[ReportScheduleResponse]
    total: int


class ScheduleRunResponse(BaseModel):
    generated: int
    report_ids: List[str]
