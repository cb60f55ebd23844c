"""
Unit Metric Endpoints

Unit economics (cost per customer, cost per transaction, ...). Recording
a value compares it with the latest earlier value of the same type.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from finops_api.api.deps import get_current_tenant, get_current_user, require_role
from finops_api.database import get_db
from finops_api.models.tenant import Tenant
from finops_api.models.unit_metric import UnitMetric, compute_trend
from finops_api.models.user import User, UserRole
from finops_api.schemas.unit_metric import (
    UnitMetricCreate,
    UnitMetricHistoryResponse,
    UnitMetricLatestResponse,
    UnitMetricResponse,
)
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/metrics/unit", tags=["metrics"])

METRIC_TYPE_PATTERN = "^[a-z0-9_]{1,100}$"


@router.get("", response_model=UnitMetricLatestResponse)
async def get_latest_metrics(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Latest value of each metric type."""
    latest_dates = db.query(
        UnitMetric.metric_type,
        func.max(UnitMetric.date).label("latest_date")
    ).filter(
        UnitMetric.tenant_id == tenant.id
    ).group_by(UnitMetric.metric_type).subquery()

    rows = db.query(UnitMetric).join(
        latest_dates,
        (UnitMetric.metric_type == latest_dates.c.metric_type)
        & (UnitMetric.date == latest_dates.c.latest_date)
    ).filter(
        UnitMetric.tenant_id == tenant.id
    ).order_by(UnitMetric.metric_type, UnitMetric.created_at.desc()).all()

    # Two records on the same timestamp: keep the newest insert
    metrics = {}
    for row in rows:
        metrics.setdefault(row.metric_type, row)

    return UnitMetricLatestResponse(metrics=list(metrics.values()))


@router.get("/{metric_type}", response_model=UnitMetricHistoryResponse)
async def get_metric_history(
    metric_type: str = Path(..., pattern=METRIC_TYPE_PATTERN),
    limit: int = Query(30, ge=1, le=365),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    history = db.query(UnitMetric).filter(
        UnitMetric.tenant_id == tenant.id,
        UnitMetric.metric_type == metric_type
    ).order_by(UnitMetric.date.desc(), UnitMetric.created_at.desc()).limit(limit).all()

    return UnitMetricHistoryResponse(metric_type=metric_type, history=history)


@router.post("/{metric_type}", response_model=UnitMetricResponse, status_code=status.HTTP_201_CREATED)
async def record_metric(
    metric_data: UnitMetricCreate,
    metric_type: str = Path(..., pattern=METRIC_TYPE_PATTERN),
    current_user: User = Depends(require_role(UserRole.ANALYST)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Record a new observation.

    previous_value is the latest observation dated at or before this one.
    """
    date = metric_data.date or datetime.utcnow()

    previous = db.query(UnitMetric).filter(
        UnitMetric.tenant_id == tenant.id,
        UnitMetric.metric_type == metric_type,
        UnitMetric.date <= date
    ).order_by(UnitMetric.date.desc(), UnitMetric.created_at.desc()).first()

    previous_value = previous.value if previous else None
    change, trend = compute_trend(metric_data.value, previous_value)

    metric = UnitMetric(
        tenant_id=tenant.id,
        metric_type=metric_type,
        metric_name=metric_data.metric_name or metric_type.replace("_", " ").title(),
        value=metric_data.value,
        unit=metric_data.unit,
        previous_value=previous_value,
        change_percentage=change,
        trend=trend,
        date=date,
        period=metric_data.period,
        dimensions=metric_data.dimensions,
    )

    db.add(metric)
    db.commit()
    db.refresh(metric)

    logger.info(f"Unit metric recorded: {metric_type}={metric.value} ({trend.value}) by {current_user.id}")

    return metric
