"""
Cost Endpoints

Cost records are pushed by the billing ingestion side and analyzed on read.
Every analysis takes an optional start/end window (default: the last 30
days, end inclusive).

RBAC:
- Records list, allocation, anomalies, trend, by-service: any member
- Ingest records: MANAGER+
"""
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from finops_api.api.deps import get_current_tenant, get_current_user, require_role
from finops_api.core.cost_analysis import (
    ANOMALY_BASELINE_DAYS,
    SEVERITIES,
    allocation_summary,
    cost_by_service,
    cost_trend,
    detect_anomalies,
    previous_window,
    resolve_window,
)
from finops_api.core.exceptions import CloudAccountNotFoundError, InvalidInputError
from finops_api.database import get_db
from finops_api.models.cloud_account import CloudAccount
from finops_api.models.cost import CostRecord
from finops_api.models.tenant import Tenant
from finops_api.models.user import User, UserRole
from finops_api.schemas.cost import (
    AllocationResponse,
    AnomalyListResponse,
    CostByServiceResponse,
    CostRecordBatch,
    CostRecordBatchResponse,
    CostRecordListResponse,
    CostTrendResponse,
)
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/costs", tags=["costs"])


def load_cost_records(db: Session, tenant: Tenant, start: datetime, end: datetime, inclusive: bool = True) -> List[CostRecord]:
    query = db.query(CostRecord).filter(
        CostRecord.tenant_id == tenant.id,  # CRITICAL
        CostRecord.usage_date >= start
    )
    query = query.filter(CostRecord.usage_date <= end if inclusive else CostRecord.usage_date < end)
    return query.order_by(CostRecord.usage_date).all()


@router.post("/records", response_model=CostRecordBatchResponse, status_code=status.HTTP_201_CREATED)
async def ingest_cost_records(
    batch: CostRecordBatch,
    current_user: User = Depends(require_role(UserRole.MANAGER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Bulk insert. Referenced cloud accounts must belong to the tenant."""
    account_ids = {r.cloud_account_id for r in batch.records if r.cloud_account_id}
    if account_ids:
        known = {
            account_id for (account_id,) in db.query(CloudAccount.id).filter(
                CloudAccount.tenant_id == tenant.id,  # CRITICAL
                CloudAccount.id.in_(account_ids)
            )
        }
        missing = sorted(account_ids - known)
        if missing:
            raise CloudAccountNotFoundError(missing[0])

    db.add_all([CostRecord(tenant_id=tenant.id, **record.model_dump()) for record in batch.records])
    db.commit()

    logger.info(f"Cost records ingested: {len(batch.records)} for tenant {tenant.id} by {current_user.id}")

    return CostRecordBatchResponse(created=len(batch.records))


@router.get("/records", response_model=CostRecordListResponse)
async def list_cost_records(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    service: Optional[str] = Query(None),
    team: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    start, end = resolve_window(start, end)
    query = db.query(CostRecord).filter(
        CostRecord.tenant_id == tenant.id,
        CostRecord.usage_date >= start,
        CostRecord.usage_date <= end
    )
    if service:
        query = query.filter(CostRecord.service == service)
    if team:
        query = query.filter(CostRecord.team == team)

    total = query.count()
    offset = (page - 1) * page_size
    records = query.order_by(CostRecord.usage_date.desc()).offset(offset).limit(page_size).all()

    return CostRecordListResponse(records=records, total=total, page=page, page_size=page_size)


@router.get("/allocation", response_model=AllocationResponse)
async def get_allocation(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    start, end = resolve_window(start, end)
    summary = allocation_summary(load_cost_records(db, tenant, start, end), tenant.allocation_target)
    return AllocationResponse(start=start, end=end, **summary)


@router.get("/anomalies", response_model=AnomalyListResponse)
async def get_anomalies(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    severity: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    if severity and severity.upper() not in SEVERITIES:
        raise InvalidInputError(f"Unsupported severity: {severity}")
    start, end = resolve_window(start, end)

    records = load_cost_records(db, tenant, start - timedelta(days=ANOMALY_BASELINE_DAYS), end)
    anomalies = detect_anomalies(records, start.date(), end.date())
    if severity:
        anomalies = [a for a in anomalies if a["severity"] == severity.upper()]
    anomalies = anomalies[:limit]

    return AnomalyListResponse(
        start=start,
        end=end,
        anomalies=anomalies,
        total=len(anomalies),
        total_impact=round(sum(a["impact"] for a in anomalies), 2)
    )


@router.get("/trend", response_model=CostTrendResponse)
async def get_trend(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    granularity: str = Query("daily"),
    group_by: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    start, end = resolve_window(start, end)
    trend = cost_trend(load_cost_records(db, tenant, start, end), start, end, granularity, group_by)
    return CostTrendResponse(start=start, end=end, **trend)


@router.get("/by-service", response_model=CostByServiceResponse)
async def get_cost_by_service(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    start, end = resolve_window(start, end)
    previous_start, previous_end = previous_window(start, end)

    services = cost_by_service(
        load_cost_records(db, tenant, start, end),
        load_cost_records(db, tenant, previous_start, previous_end, inclusive=False)
    )
    return CostByServiceResponse(
        start=start,
        end=end,
        total_cost=round(sum(s["cost"] for s in services), 2),
        services=services
    )
