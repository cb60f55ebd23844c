"""
Report Rendering

Turns a tenant's data into report rows and serializes them as CSV or JSON,
stores generated reports and runs due report schedules.
"""
import calendar
import csv
import io
import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from finops_api.core.mailer import Mailer
from finops_api.core.storage import ReportStorage
from finops_api.models.budget import Budget
from finops_api.models.cloud_account import CloudAccount
from finops_api.models.cost import CostRecord
from finops_api.models.policy import Policy, PolicyStatus
from finops_api.models.recommendation import Recommendation, RecommendationStatus
from finops_api.models.report import Report, ReportFormat, ReportSchedule, ReportStatus, ReportType, ScheduleFrequency
from finops_api.models.tenant import Tenant
from finops_api.models.unit_metric import UnitMetric
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

Rows = List[Dict[str, Any]]


def _cost_summary_rows(db: Session, tenant: Tenant) -> Rows:
    budgets = db.query(Budget).filter(Budget.tenant_id == tenant.id).all()
    total_amount = sum(b.amount for b in budgets)
    total_spend = sum(b.current_spend for b in budgets)
    total_forecast = sum(b.forecasted_spend for b in budgets)
    currency = (tenant.settings or {}).get("currency", "USD")
    since = datetime.utcnow() - timedelta(days=30)
    cloud_spend = sum(
        amount for (amount,) in db.query(CostRecord.amount).filter(
            CostRecord.tenant_id == tenant.id,
            CostRecord.usage_date >= since
        )
    )
    pending = db.query(Recommendation).filter(
        Recommendation.tenant_id == tenant.id,
        Recommendation.status == RecommendationStatus.PENDING
    ).all()

    return [
        {"metric": "total_budget", "value": round(total_amount, 2), "unit": currency},
        {"metric": "total_spend", "value": round(total_spend, 2), "unit": currency},
        {"metric": "forecasted_spend", "value": round(total_forecast, 2), "unit": currency},
        {"metric": "cloud_spend_30d", "value": round(cloud_spend, 2), "unit": currency},
        {"metric": "pending_savings", "value": round(sum(r.savings for r in pending), 2), "unit": currency},
        {
            "metric": "budget_utilization",
            "value": round(total_spend / total_amount * 100, 2) if total_amount else 0.0,
            "unit": "%",
        },
        {
            "metric": "cloud_accounts",
            "value": db.query(CloudAccount).filter(CloudAccount.tenant_id == tenant.id).count(),
            "unit": "count",
        },
        {
            "metric": "active_policies",
            "value": db.query(Policy).filter(
                Policy.tenant_id == tenant.id,
                Policy.status == PolicyStatus.ACTIVE
            ).count(),
            "unit": "count",
        },
    ]


def _budget_rows(db: Session, tenant: Tenant) -> Rows:
    budgets = db.query(Budget).filter(Budget.tenant_id == tenant.id).order_by(Budget.name).all()
    return [
        {
            "id": b.id,
            "name": b.name,
            "period": b.period.value,
            "amount": b.amount,
            "current_spend": b.current_spend,
            "forecasted_spend": b.forecasted_spend,
            "utilization": b.utilization,
            "status": b.status.value,
        }
        for b in budgets
    ]


def _policy_rows(db: Session, tenant: Tenant) -> Rows:
    policies = db.query(Policy).filter(Policy.tenant_id == tenant.id).order_by(Policy.name).all()
    return [
        {
            "id": p.id,
            "name": p.name,
            "type": p.type.value,
            "status": p.status.value,
            "enforced": p.enforced,
            "action": p.action.value,
            "compliance_rate": p.compliance_rate,
        }
        for p in policies
    ]


def _unit_metric_rows(db: Session, tenant: Tenant) -> Rows:
    metrics = db.query(UnitMetric).filter(
        UnitMetric.tenant_id == tenant.id
    ).order_by(UnitMetric.metric_type, UnitMetric.date.desc()).all()
    return [
        {
            "metric_type": m.metric_type,
            "metric_name": m.metric_name,
            "value": m.value,
            "unit": m.unit,
            "trend": m.trend.value,
            "change_percentage": m.change_percentage,
            "date": m.date.isoformat(),
        }
        for m in metrics
    ]


ROW_BUILDERS = {
    ReportType.COST_SUMMARY: _cost_summary_rows,
    ReportType.BUDGETS: _budget_rows,
    ReportType.POLICIES: _policy_rows,
    ReportType.UNIT_METRICS: _unit_metric_rows,
}


def to_csv(rows: Rows) -> str:
    if not rows:
        return ""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(rows[0].keys()))
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def render_report(
    db: Session,
    tenant: Tenant,
    report_type: ReportType,
    report_format: ReportFormat
) -> Tuple[bytes, int]:
    """Return (file content, row count)."""
    rows = ROW_BUILDERS[report_type](db, tenant)

    if report_format == ReportFormat.CSV:
        return to_csv(rows).encode("utf-8"), len(rows)

    document = {
        "report_type": report_type.value,
        "tenant": {"id": tenant.id, "name": tenant.name},
        "generated_at": datetime.utcnow().isoformat(),
        "rows": rows,
    }
    return json.dumps(document, indent=2, default=str).encode("utf-8"), len(rows)


def create_report(
    db: Session,
    storage: ReportStorage,
    tenant: Tenant,
    report_type: ReportType,
    report_format: ReportFormat,
    name: Optional[str] = None,
    created_by: Optional[str] = None
) -> Tuple[Report, int]:
    """Render, store and commit a report. Returns (report, row count)."""
    report = Report(
        tenant_id=tenant.id,
        created_by=created_by,
        name=name or f"{report_type.value.replace('_', ' ').title()} {datetime.utcnow():%Y-%m-%d}",
        report_type=report_type,
        format=report_format,
        status=ReportStatus.READY,
    )
    db.add(report)
    db.flush()  # assigns report.id

    content, row_count = render_report(db, tenant, report_type, report_format)
    key = storage.build_key(tenant.id, report.id, report_format.value.lower())
    report.size_bytes = storage.put(key, content)
    report.storage_key = key

    db.commit()
    db.refresh(report)
    return report, row_count


# ============================================================================
# SCHEDULES
# ============================================================================

def _add_month(value: datetime) -> datetime:
    year = value.year + value.month // 12
    month = value.month % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_run_after(frequency: ScheduleFrequency, last: datetime, now: datetime) -> datetime:
    """
    The first run time after now on the schedule's cadence.

    Missed runs are skipped, not replayed. Monthly runs move to the same day
    of the next month, clamped to that month's last day.
    """
    run = last
    while run <= now:
        if frequency == ScheduleFrequency.DAILY:
            run += timedelta(days=1)
        elif frequency == ScheduleFrequency.WEEKLY:
            run += timedelta(weeks=1)
        else:
            run = _add_month(run)
    return run


def run_due_schedules(
    db: Session,
    storage: ReportStorage,
    mailer: Mailer,
    now: Optional[datetime] = None
) -> List[Report]:
    """
    Generate and mail every enabled schedule whose next_run_at has passed.

    Schedules of inactive tenants are advanced without running. A schedule
    that fails to render is logged and left due for the next call.
    """
    now = now or datetime.utcnow()
    due = db.query(ReportSchedule).filter(
        ReportSchedule.enabled.is_(True),
        ReportSchedule.next_run_at <= now
    ).order_by(ReportSchedule.next_run_at).all()

    reports = []
    for schedule in due:
        tenant = schedule.tenant
        if not tenant.is_active:
            schedule.next_run_at = next_run_after(schedule.frequency, schedule.next_run_at, now)
            db.commit()
            continue

        try:
            report, row_count = create_report(
                db, storage, tenant, schedule.report_type, schedule.format,
                name=f"{schedule.name} {now:%Y-%m-%d}",
                created_by=schedule.created_by
            )
        except (OSError, ValueError) as e:
            db.rollback()
            logger.error(f"Scheduled report failed: schedule={schedule.id}: {e}")
            continue

        mailer.send(
            schedule.recipients,
            f"{report.name} ({tenant.name})",
            f"Your scheduled {schedule.frequency.value.lower()} report is attached ({row_count} rows).",
            attachments=[(report.file_name, storage.get(report.storage_key) or b"", report.media_type)]
        )

        schedule.last_run_at = now
        schedule.last_report_id = report.id
        schedule.next_run_at = next_run_after(schedule.frequency, schedule.next_run_at, now)
        db.commit()

        logger.info(f"Scheduled report generated: {report.id} for schedule {schedule.id}")
        reports.append(report)

    return reports
