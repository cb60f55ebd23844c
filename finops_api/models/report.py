"""
Report Model

Metadata for a generated report. The rendered file lives in blob storage
under storage_key.

A ReportSchedule regenerates a report on a fixed cadence and mails it to
its recipients. next_run_at is always in UTC.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, JSON, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from finops_api.database import Base
import enum
import uuid


class ReportType(str, enum.Enum):
    COST_SUMMARY = "COST_SUMMARY"
    BUDGETS = "BUDGETS"
    POLICIES = "POLICIES"
    UNIT_METRICS = "UNIT_METRICS"


class ReportFormat(str, enum.Enum):
    CSV = "CSV"
    JSON = "JSON"


class ReportStatus(str, enum.Enum):
    READY = "READY"
    FAILED = "FAILED"


class ScheduleFrequency(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class Report(Base):
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    created_by = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    name = Column(String(255), nullable=False)
    report_type = Column(SQLEnum(ReportType), nullable=False)
    format = Column(SQLEnum(ReportFormat), default=ReportFormat.CSV, nullable=False)
    status = Column(SQLEnum(ReportStatus), default=ReportStatus.READY, nullable=False)

    storage_key = Column(String(512), nullable=True)
    size_bytes = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="reports")

    def __repr__(self):
        return f"<Report {self.name} {self.report_type} (tenant={self.tenant_id})>"

    @property
    def file_name(self) -> str:
        return f"{self.report_type.value.lower()}-{self.id[:8]}.{self.format.value.lower()}"

    @property
    def media_type(self) -> str:
        return "text/csv" if self.format == ReportFormat.CSV else "application/json"


class ReportSchedule(Base):
    __tablename__ = "report_schedules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    created_by = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    name = Column(String(255), nullable=False)
    report_type = Column(SQLEnum(ReportType), nullable=False)
    format = Column(SQLEnum(ReportFormat), default=ReportFormat.CSV, nullable=False)
    frequency = Column(SQLEnum(ScheduleFrequency), nullable=False)
    recipients = Column(JSON, nullable=False, default=list)
    enabled = Column(Boolean, default=True, nullable=False)

    next_run_at = Column(DateTime, nullable=False)
    last_run_at = Column(DateTime, nullable=True)
    last_report_id = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="report_schedules")

    __table_args__ = (
        Index('idx_report_schedule_due', 'enabled', 'next_run_at'),
    )

    def __repr__(self):
        return f"<ReportSchedule {self.name} {self.frequency} (tenant={self.tenant_id})>"
