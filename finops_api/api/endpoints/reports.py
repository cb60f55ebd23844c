"""
Report Endpoints

Generated reports are rendered synchronously and stored as blobs under
{tenant_id}/{report_id}.{ext}.

Report schedules regenerate a report daily, weekly or monthly and mail it
to their recipients. POST /api/admin/reports/run-due runs whatever is due;
a cron job or worker calls it.

RBAC:
- List / get: any member
- Download: reports:export permission (OWNER and ADMIN implicitly)
- Generate, create schedules: ANALYST+
- Delete schedules: their creator or ADMIN+
- Delete reports: ADMIN+
- Run due schedules: superadmin
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from finops_api.api.deps import (
    get_current_tenant,
    get_current_user,
    require_admin,
    require_permission,
    require_role,
    require_superadmin,
)
from finops_api.core.exceptions import ReportNotFoundError, ReportScheduleNotFoundError
from finops_api.core.mailer import Mailer, get_mailer
from finops_api.core.permissions import REPORTS_EXPORT, PermissionDenied
from finops_api.core.reporting import create_report, next_run_after, run_due_schedules
from finops_api.core.storage import ReportStorage, get_report_storage
from finops_api.database import get_db
from finops_api.models.report import Report, ReportSchedule
from finops_api.models.tenant import Tenant
from finops_api.models.user import User, UserRole
from finops_api.schemas.report import (
    ReportGenerateRequest,
    ReportListResponse,
    ReportResponse,
    ReportScheduleCreate,
    ReportScheduleListResponse,
    ReportScheduleResponse,
    ScheduleRunResponse,
)
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])
admin_router = APIRouter(prefix="/admin/reports", tags=["admin"])


def _get_report(db: Session, tenant: Tenant, report_id: str) -> Report:
    report = db.query(Report).filter(
        Report.id == report_id,
        Report.tenant_id == tenant.id  # CRITICAL
    ).first()
    if not report:
        raise ReportNotFoundError(report_id)
    return report


def _get_schedule(db: Session, tenant: Tenant, schedule_id: str) -> ReportSchedule:
    schedule = db.query(ReportSchedule).filter(
        ReportSchedule.id == schedule_id,
        ReportSchedule.tenant_id == tenant.id  # CRITICAL
    ).first()
    if not schedule:
        raise ReportScheduleNotFoundError(schedule_id)
    return schedule


@router.post("/generate", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def generate_report(
    request_data: ReportGenerateRequest,
    current_user: User = Depends(require_role(UserRole.ANALYST)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    storage: ReportStorage = Depends(get_report_storage)
):
    report, row_count = create_report(
        db, storage, tenant, request_data.report_type, request_data.format,
        name=request_data.name,
        created_by=current_user.id
    )

    logger.info(
        f"Report generated: {report.id} ({report.report_type.value}, {row_count} rows) by {current_user.id}"
    )

    return report


@router.get("", response_model=ReportListResponse)
async def list_reports(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    query = db.query(Report).filter(Report.tenant_id == tenant.id)

    total = query.count()
    offset = (page - 1) * page_size
    reports = query.order_by(Report.created_at.desc()).offset(offset).limit(page_size).all()

    return ReportListResponse(
        reports=reports,
        total=total,
        page=page,
        page_size=page_size
    )


# ============================================================================
# SCHEDULES
# ============================================================================
# Declared before /{report_id} so "schedules" is not read as a report id.

@router.post("/schedule", response_model=ReportScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    schedule_data: ReportScheduleCreate,
    current_user: User = Depends(require_role(UserRole.ANALYST)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    now = datetime.utcnow()
    schedule = ReportSchedule(
        tenant_id=tenant.id,
        created_by=current_user.id,
        name=schedule_data.name,
        report_type=schedule_data.report_type,
        format=schedule_data.format,
        frequency=schedule_data.frequency,
        recipients=[str(r).lower() for r in schedule_data.recipients],
        next_run_at=schedule_data.first_run_at or next_run_after(schedule_data.frequency, now, now),
    )
    db.add(schedule)
    db.commit()
    db.refresh(schedule)

    logger.info(f"Report schedule created: {schedule.id} ({schedule.frequency.value}) by {current_user.id}")

    return schedule


@router.get("/schedules", response_model=ReportScheduleListResponse)
async def list_schedules(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    schedules = db.query(ReportSchedule).filter(
        ReportSchedule.tenant_id == tenant.id
    ).order_by(ReportSchedule.next_run_at).all()
    return ReportScheduleListResponse(schedules=schedules, total=len(schedules))


@router.delete("/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(
    schedule_id: str,
    current_user: User = Depends(require_role(UserRole.ANALYST)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    schedule = _get_schedule(db, tenant, schedule_id)
    if schedule.created_by != current_user.id and not current_user.has_permission(UserRole.ADMIN):
        raise PermissionDenied(detail="Only the creator or an admin can delete this schedule")

    db.delete(schedule)
    db.commit()

    logger.info(f"Report schedule deleted: {schedule_id} by {current_user.id}")

    return None


# ============================================================================
# SINGLE REPORT
# ============================================================================

@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return _get_report(db, tenant, report_id)


@router.get("/{report_id}/download")
async def download_report(
    report_id: str,
    current_user: User = Depends(require_permission(REPORTS_EXPORT)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    storage: ReportStorage = Depends(get_report_storage)
):
    report = _get_report(db, tenant, report_id)

    content = storage.get(report.storage_key) if report.storage_key else None
    if content is None:
        logger.error(f"Report file missing from storage: {report.id}")
        raise ReportNotFoundError(report_id)

    return Response(
        content=content,
        media_type=report.media_type,
        headers={"Content-Disposition": f'attachment; filename="{report.file_name}"'}
    )


@router.delete("/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_report(
    report_id: str,
    current_user: User = Depends(require_admin),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    storage: ReportStorage = Depends(get_report_storage)
):
    report = _get_report(db, tenant, report_id)
    storage_key = report.storage_key

    db.delete(report)
    db.commit()

    if storage_key:
        storage.delete(storage_key)

    logger.info(f"Report deleted: {report_id} by {current_user.id}")

    return None


# ============================================================================
# PLATFORM ADMIN
# ============================================================================

@admin_router.post("/run-due", response_model=ScheduleRunResponse)
async def run_due_report_schedules(
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
    storage: ReportStorage = Depends(get_report_storage),
    mailer: Mailer = Depends(get_mailer)
):
    reports = run_due_schedules(db, storage, mailer)
    logger.info(f"Due report schedules run: {len(reports)} reports by {current_user.id}")
    return ScheduleRunResponse(generated=len(reports), report_ids=[r.id for r in reports])
