"""
Budget Endpoints

RBAC:
- List / get / alerts: any member
- Create, update: MANAGER+
- Delete: ADMIN+
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from finops_api.api.deps import get_current_tenant, get_current_user, require_admin, require_role
from finops_api.core.exceptions import BudgetNotFoundError, InvalidInputError
from finops_api.database import get_db
from finops_api.models.budget import Budget, BudgetPeriod, BudgetStatus
from finops_api.models.tenant import Tenant
from finops_api.models.user import User, UserRole
from finops_api.schemas.budget import (
    BudgetAlert,
    BudgetAlertsResponse,
    BudgetCreate,
    BudgetListResponse,
    BudgetResponse,
    BudgetUpdate,
)
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/budgets", tags=["budgets"])


def _get_budget(db: Session, tenant: Tenant, budget_id: str) -> Budget:
    budget = db.query(Budget).filter(
        Budget.id == budget_id,
        Budget.tenant_id == tenant.id  # CRITICAL
    ).first()
    if not budget:
        raise BudgetNotFoundError(budget_id)
    return budget


@router.get("", response_model=BudgetListResponse)
async def list_budgets(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status_filter: Optional[BudgetStatus] = Query(None, alias="status"),
    period: Optional[BudgetPeriod] = Query(None),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    query = db.query(Budget).filter(Budget.tenant_id == tenant.id)
    if status_filter:
        query = query.filter(Budget.status == status_filter)
    if period:
        query = query.filter(Budget.period == period)

    total = query.count()
    offset = (page - 1) * page_size
    budgets = query.order_by(Budget.created_at.desc()).offset(offset).limit(page_size).all()

    return BudgetListResponse(
        budgets=budgets,
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/{budget_id}", response_model=BudgetResponse)
async def get_budget(
    budget_id: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    return _get_budget(db, tenant, budget_id)


@router.post("", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
async def create_budget(
    budget_data: BudgetCreate,
    current_user: User = Depends(require_role(UserRole.MANAGER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    budget = Budget(
        tenant_id=tenant.id,
        **budget_data.model_dump()
    )

    db.add(budget)
    db.commit()
    db.refresh(budget)

    logger.info(f"Budget created: {budget.id} by {current_user.id}")

    return budget


@router.put("/{budget_id}", response_model=BudgetResponse)
async def update_budget(
    budget_id: str,
    budget_data: BudgetUpdate,
    current_user: User = Depends(require_role(UserRole.MANAGER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    budget = _get_budget(db, tenant, budget_id)

    update_data = budget_data.model_dump(exclude_unset=True)
    for field in ("name", "amount", "period", "start_date", "scope", "alert_thresholds",
                  "alert_emails", "current_spend", "forecasted_spend", "status"):
        if field in update_data and update_data[field] is None:
            update_data.pop(field)

    start_date = update_data.get("start_date", budget.start_date)
    end_date = update_data.get("end_date", budget.end_date)
    if end_date and end_date < start_date:
        raise InvalidInputError("end_date must not be before start_date")

    for field, value in update_data.items():
        setattr(budget, field, value)

    db.commit()
    db.refresh(budget)

    logger.info(f"Budget updated: {budget.id} by {current_user.id}")

    return budget


@router.delete("/{budget_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_budget(
    budget_id: str,
    current_user: User = Depends(require_admin),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    budget = _get_budget(db, tenant, budget_id)

    db.delete(budget)
    db.commit()

    logger.info(f"Budget deleted: {budget_id} by {current_user.id}")

    return None


@router.get("/{budget_id}/alerts", response_model=BudgetAlertsResponse)
async def get_budget_alerts(
    budget_id: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Threshold status for a budget.

    A threshold is triggered once current_spend / amount * 100 reaches it;
    forecast_triggered uses forecasted_spend the same way.
    """
    budget = _get_budget(db, tenant, budget_id)
    alerts = [BudgetAlert(**alert) for alert in budget.evaluate_alerts()]

    triggered = [a.threshold for a in alerts if a.triggered]
    forecast_triggered = [a.threshold for a in alerts if a.forecast_triggered]

    return BudgetAlertsResponse(
        budget_id=budget.id,
        name=budget.name,
        amount=budget.amount,
        current_spend=budget.current_spend,
        forecasted_spend=budget.forecasted_spend,
        utilization=budget.utilization,
        forecast_utilization=budget.forecast_utilization,
        alerts=alerts,
        highest_triggered=max(triggered) if triggered else None,
        highest_forecast_triggered=max(forecast_triggered) if forecast_triggered else None
    )
