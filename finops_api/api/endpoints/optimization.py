"""
Optimization Endpoints

Recommendations are stored per tenant. /recommendations/refresh derives new
ones from the last 30 days of cost data. A resource that already has a
recommendation of the same type, in any status, is skipped, so dismissed
ones stay dismissed.

RBAC:
- Recommendations list, ESR, rightsizing, waste: any member
- Create, refresh, apply / dismiss: MANAGER+
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from finops_api.api.deps import get_current_tenant, get_current_user, require_role
from finops_api.api.endpoints.costs import load_cost_records
from finops_api.core.cost_analysis import (
    effective_savings_rate,
    resolve_window,
    rightsizing_candidates,
    waste_candidates,
)
from finops_api.core.exceptions import InvalidInputError, RecommendationNotFoundError
from finops_api.database import get_db
from finops_api.models.recommendation import (
    Level,
    Recommendation,
    RecommendationStatus,
    RecommendationType,
)
from finops_api.models.tenant import Tenant
from finops_api.models.user import User, UserRole
from finops_api.schemas.optimization import (
    ESRResponse,
    RecommendationAction,
    RecommendationCreate,
    RecommendationListResponse,
    RecommendationResponse,
    RefreshResponse,
    RightsizingResponse,
    WasteResponse,
)
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/optimization", tags=["optimization"])


def _get_recommendation(db: Session, tenant: Tenant, recommendation_id: str) -> Recommendation:
    recommendation = db.query(Recommendation).filter(
        Recommendation.id == recommendation_id,
        Recommendation.tenant_id == tenant.id  # CRITICAL
    ).first()
    if not recommendation:
        raise RecommendationNotFoundError(recommendation_id)
    return recommendation


def _rightsizing_recommendation(tenant: Tenant, candidate: dict) -> Recommendation:
    return Recommendation(
        tenant_id=tenant.id,
        type=RecommendationType.RIGHTSIZING,
        title=f"Downsize {candidate['resource_id']}",
        description=(
            f"{candidate['service']} resource averages {candidate['average_cpu']}% CPU. "
            "A smaller size would cover its load."
        ),
        service=candidate["service"],
        resource_id=candidate["resource_id"],
        current_cost=candidate["monthly_cost"],
        optimized_cost=round(candidate["monthly_cost"] - candidate["estimated_savings"], 2),
        confidence=Level(candidate["confidence"]),
        effort=Level.MEDIUM,
    )


def _waste_recommendation(tenant: Tenant, candidate: dict) -> Recommendation:
    if candidate["reason"] == "idle":
        description = f"{candidate['service']} resource averages {candidate['average_cpu']}% CPU."
    else:
        description = f"{candidate['service']} resource reported no usage in the window."
    return Recommendation(
        tenant_id=tenant.id,
        type=RecommendationType.WASTE_REDUCTION,
        title=f"Remove {candidate['reason']} resource {candidate['resource_id']}",
        description=description,
        service=candidate["service"],
        resource_id=candidate["resource_id"],
        current_cost=candidate["monthly_cost"],
        optimized_cost=0.0,
        confidence=Level.HIGH,
        effort=Level.LOW,
    )


# ============================================================================
# RECOMMENDATIONS
# ============================================================================

@router.get("/recommendations", response_model=RecommendationListResponse)
async def list_recommendations(
    type_filter: Optional[RecommendationType] = Query(None, alias="type"),
    status_filter: Optional[RecommendationStatus] = Query(None, alias="status"),
    min_savings: float = Query(0.0, ge=0),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Recommendations, largest savings first.

    total_savings sums the PENDING ones in the result and realized_savings
    the APPLIED ones.
    """
    query = db.query(Recommendation).filter(Recommendation.tenant_id == tenant.id)
    if type_filter:
        query = query.filter(Recommendation.type == type_filter)
    if status_filter:
        query = query.filter(Recommendation.status == status_filter)

    recommendations = [r for r in query.all() if r.savings >= min_savings]
    recommendations.sort(key=lambda r: (-r.savings, r.created_at))

    return RecommendationListResponse(
        recommendations=recommendations,
        total=len(recommendations),
        total_savings=round(sum(r.savings for r in recommendations if r.status == RecommendationStatus.PENDING), 2),
        realized_savings=round(sum(r.savings for r in recommendations if r.status == RecommendationStatus.APPLIED), 2)
    )


@router.post("/recommendations", response_model=RecommendationResponse, status_code=status.HTTP_201_CREATED)
async def create_recommendation(
    recommendation_data: RecommendationCreate,
    current_user: User = Depends(require_role(UserRole.MANAGER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    recommendation = Recommendation(tenant_id=tenant.id, **recommendation_data.model_dump())
    db.add(recommendation)
    db.commit()
    db.refresh(recommendation)

    logger.info(f"Recommendation created: {recommendation.id} by {current_user.id}")

    return recommendation


@router.post("/recommendations/refresh", response_model=RefreshResponse)
async def refresh_recommendations(
    current_user: User = Depends(require_role(UserRole.MANAGER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    start, end = resolve_window(None, None)
    records = load_cost_records(db, tenant, start, end)

    existing = {
        (r.type, r.resource_id)
        for r in db.query(Recommendation).filter(Recommendation.tenant_id == tenant.id)
    }

    created = []
    generated = [_rightsizing_recommendation(tenant, c) for c in rightsizing_candidates(records)]
    generated += [_waste_recommendation(tenant, c) for c in waste_candidates(records)]
    for recommendation in generated:
        if (recommendation.type, recommendation.resource_id) in existing:
            continue
        db.add(recommendation)
        created.append(recommendation)
    db.commit()
    for recommendation in created:
        db.refresh(recommendation)

    logger.info(f"Recommendations refreshed: {len(created)} new for tenant {tenant.id} by {current_user.id}")

    return RefreshResponse(created=len(created), recommendations=created)


@router.post("/recommendations/{recommendation_id}/apply", response_model=RecommendationResponse)
async def resolve_recommendation(
    recommendation_id: str,
    payload: Optional[RecommendationAction] = None,
    current_user: User = Depends(require_role(UserRole.MANAGER)),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Apply (default) or dismiss a PENDING recommendation."""
    recommendation = _get_recommendation(db, tenant, recommendation_id)
    if recommendation.status != RecommendationStatus.PENDING:
        raise InvalidInputError(f"Recommendation is already {recommendation.status.value}")

    action = payload.action if payload else "apply"
    recommendation.status = RecommendationStatus.APPLIED if action == "apply" else RecommendationStatus.DISMISSED
    recommendation.resolved_by = current_user.id
    recommendation.resolved_at = datetime.utcnow()
    db.commit()
    db.refresh(recommendation)

    logger.info(f"Recommendation {action}: {recommendation.id} by {current_user.id}")

    return recommendation


# ============================================================================
# ANALYSIS
# ============================================================================

@router.get("/esr", response_model=ESRResponse)
async def get_effective_savings_rate(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    start, end = resolve_window(start, end)
    summary = effective_savings_rate(load_cost_records(db, tenant, start, end), tenant.esr_target)
    return ESRResponse(start=start, end=end, **summary)


@router.get("/rightsizing", response_model=RightsizingResponse)
async def get_rightsizing(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    start, end = resolve_window(start, end)
    candidates = rightsizing_candidates(load_cost_records(db, tenant, start, end))
    return RightsizingResponse(
        start=start,
        end=end,
        candidates=candidates,
        total_savings=round(sum(c["estimated_savings"] for c in candidates), 2)
    )


@router.get("/waste", response_model=WasteResponse)
async def get_waste(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    start, end = resolve_window(start, end)
    candidates = waste_candidates(load_cost_records(db, tenant, start, end))
    return WasteResponse(
        start=start,
        end=end,
        candidates=candidates,
        total_savings=round(sum(c["estimated_savings"] for c in candidates), 2)
    )
