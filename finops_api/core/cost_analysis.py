"""
Cost Analysis

Pure functions over CostRecord rows: allocation, per-service breakdown,
trends, spend anomalies, effective savings rate (ESR) and the rightsizing
and waste heuristics behind generated recommendations.

Callers load the records for the window. Nothing here touches the session,
so the functions also accept any object with the same attributes.

Anomalies: a service's spend on a day is compared with its mean daily
spend over the previous 7 days (days without records count as zero). A
day at least 50% above a non-zero baseline is an anomaly.
"""
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from finops_api.core.exceptions import InvalidInputError
from finops_api.models.cost import COMMITMENT_MODELS, PricingModel
from finops_api.utils.dates import naive_utc

DEFAULT_WINDOW_DAYS = 30
MAX_WINDOW_DAYS = 366

ANOMALY_BASELINE_DAYS = 7
ANOMALY_MIN_DEVIATION = 50.0
# (minimum deviation %, severity), highest first
SEVERITY_THRESHOLDS = [(200.0, "CRITICAL"), (100.0, "HIGH"), (75.0, "MEDIUM")]
SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")

UNALLOCATED = "unallocated"
GRANULARITIES = ("daily", "weekly", "monthly")
GROUP_BY_FIELDS = {
    "service": "service",
    "region": "region",
    "team": "team",
    "account": "cloud_account_id",
}

# (min average CPU %, max average CPU %, fraction of cost saved by downsizing)
RIGHTSIZING_BANDS = [(5.0, 20.0, 0.75), (20.0, 40.0, 0.5)]
IDLE_CPU_THRESHOLD = 5.0
# Days of CPU samples needed before a rightsizing estimate is HIGH confidence
HIGH_CONFIDENCE_SAMPLES = 14
MONTH_DAYS = 30

Row = Dict[str, Any]


def _money(value: float) -> float:
    return round(value, 2)


def _share(part: float, total: float) -> float:
    return round(part / total * 100, 2) if total else 0.0


def resolve_window(
    start: Optional[datetime],
    end: Optional[datetime],
    now: Optional[datetime] = None,
    days: int = DEFAULT_WINDOW_DAYS
) -> Tuple[datetime, datetime]:
    """
    Normalize a [start, end] query window to naive UTC.

    end defaults to now and start to `days` before end.
    """
    end = naive_utc(end) or now or datetime.utcnow()
    start = naive_utc(start) or end - timedelta(days=days)
    if start > end:
        raise InvalidInputError("start must not be after end")
    if (end - start).days > MAX_WINDOW_DAYS:
        raise InvalidInputError(f"Window must not exceed {MAX_WINDOW_DAYS} days")
    return start, end


def previous_window(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """The window of the same length ending where this one starts."""
    return start - (end - start), start


def _sum_by(records: Iterable, field: str, empty_label: str = "unknown") -> Dict[str, float]:
    totals: Dict[str, float] = defaultdict(float)
    for record in records:
        totals[getattr(record, field) or empty_label] += record.amount
    return totals


# ============================================================================
# ALLOCATION AND BREAKDOWNS
# ============================================================================

def allocation_summary(records: List, target: float) -> Row:
    """Share of spend attributed to a team, against the tenant's target (%)."""
    total = sum(r.amount for r in records)
    by_team = _sum_by(records, "team", UNALLOCATED)
    unallocated = by_team.get(UNALLOCATED, 0.0)
    allocated = total - unallocated
    percentage = _share(allocated, total)

    return {
        "total_cost": _money(total),
        "allocated_cost": _money(allocated),
        "unallocated_cost": _money(unallocated),
        "allocation_percentage": percentage,
        "target": target,
        "meets_target": bool(total) and percentage >= target,
        "by_team": [
            {"team": team, "cost": _money(cost), "percentage": _share(cost, total)}
            for team, cost in sorted(by_team.items(), key=lambda item: -item[1])
        ],
    }


def cost_by_service(records: List, previous_records: List) -> List[Row]:
    """Spend per service, largest first, with the change against the previous window."""
    current = _sum_by(records, "service")
    before = _sum_by(previous_records, "service")
    total = sum(current.values())

    rows = []
    for service, cost in sorted(current.items(), key=lambda item: -item[1]):
        previous = before.get(service, 0.0)
        rows.append({
            "service": service,
            "cost": _money(cost),
            "percentage": _share(cost, total),
            "previous_cost": _money(previous),
            "change_percentage": _share(cost - previous, previous) if previous else None,
        })
    return rows


# ============================================================================
# TREND
# ============================================================================

def _bucket(day: date, granularity: str) -> date:
    if granularity == "weekly":
        return day - timedelta(days=day.weekday())
    if granularity == "monthly":
        return day.replace(day=1)
    return day


def _bucket_keys(start: date, end: date, granularity: str) -> List[date]:
    keys: List[date] = []
    day = start
    while day <= end:
        key = _bucket(day, granularity)
        if not keys or keys[-1] != key:
            keys.append(key)
        day += timedelta(days=1)
    return keys


def cost_trend(
    records: List,
    start: datetime,
    end: datetime,
    granularity: str = "daily",
    group_by: Optional[str] = None
) -> Row:
    """
    Spend per period across the window. Periods without spend are zero.

    Weekly periods start on Monday and monthly ones on the 1st.
    """
    if granularity not in GRANULARITIES:
        raise InvalidInputError(f"Unsupported granularity: {granularity}")
    field = None
    if group_by:
        field = GROUP_BY_FIELDS.get(group_by)
        if not field:
            raise InvalidInputError(f"Unsupported group_by: {group_by}")

    totals: Dict[date, float] = defaultdict(float)
    groups: Dict[date, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for record in records:
        key = _bucket(record.usage_date.date(), granularity)
        totals[key] += record.amount
        if field:
            label = getattr(record, field) or (UNALLOCATED if field == "team" else "unknown")
            groups[key][label] += record.amount

    points = []
    for key in _bucket_keys(start.date(), end.date(), granularity):
        point: Row = {"period": key.isoformat(), "cost": _money(totals.get(key, 0.0))}
        if field:
            point["groups"] = {label: _money(cost) for label, cost in sorted(groups[key].items())}
        points.append(point)

    return {
        "granularity": granularity,
        "group_by": group_by,
        "total_cost": _money(sum(totals.values())),
        "points": points,
    }


# ============================================================================
# ANOMALIES
# ============================================================================

def severity_for(deviation: float) -> str:
    for threshold, severity in SEVERITY_THRESHOLDS:
        if deviation >= threshold:
            return severity
    return "LOW"


def detect_anomalies(
    records: List,
    start: date,
    end: date,
    min_deviation: float = ANOMALY_MIN_DEVIATION
) -> List[Row]:
    """
    Daily per-service spikes between start and end (inclusive).

    records must cover the ANOMALY_BASELINE_DAYS before start as well.
    Newest first, then by deviation.
    """
    daily: Dict[Tuple[str, date], float] = defaultdict(float)
    for record in records:
        daily[(record.service, record.usage_date.date())] += record.amount
    services = sorted({service for service, _ in daily})

    anomalies = []
    for service in services:
        day = start
        while day <= end:
            baseline = [daily.get((service, day - timedelta(days=i)), 0.0)
                        for i in range(1, ANOMALY_BASELINE_DAYS + 1)]
            expected = sum(baseline) / ANOMALY_BASELINE_DAYS
            actual = daily.get((service, day), 0.0)
            if expected > 0:
                deviation = (actual - expected) / expected * 100
                if deviation >= min_deviation:
                    anomalies.append({
                        "id": f"{service}:{day.isoformat()}",
                        "service": service,
                        "date": day.isoformat(),
                        "actual_cost": _money(actual),
                        "expected_cost": _money(expected),
                        "impact": _money(actual - expected),
                        "deviation_percentage": round(deviation, 2),
                        "severity": severity_for(deviation),
                    })
            day += timedelta(days=1)

    anomalies.sort(key=lambda a: (a["date"], a["deviation_percentage"]), reverse=True)
    return anomalies


# ============================================================================
# RATE OPTIMIZATION
# ============================================================================

def effective_savings_rate(records: List, target: float) -> Row:
    """
    ESR = (on-demand equivalent - actual) / on-demand equivalent.

    Rates and the target are fractions (0.15 is 15%). Commitment coverage is
    the share of on-demand equivalent spend running on reservations or
    savings plans, as a percentage.
    """
    on_demand = sum(r.list_cost for r in records)
    actual = sum(r.amount for r in records)
    committed = sum(r.list_cost for r in records if r.pricing_model in COMMITMENT_MODELS)
    rate = (on_demand - actual) / on_demand if on_demand else 0.0

    breakdown = []
    for model in PricingModel:
        subset = [r for r in records if r.pricing_model == model]
        model_on_demand = sum(r.list_cost for r in subset)
        model_actual = sum(r.amount for r in subset)
        breakdown.append({
            "pricing_model": model.value,
            "cost": _money(model_actual),
            "on_demand_cost": _money(model_on_demand),
            "savings": _money(model_on_demand - model_actual),
        })

    return {
        "effective_savings_rate": round(rate, 4),
        "target": target,
        "meets_target": bool(on_demand) and rate >= target,
        "on_demand_cost": _money(on_demand),
        "actual_cost": _money(actual),
        "savings": _money(on_demand - actual),
        "commitment_coverage": _share(committed, on_demand),
        "by_pricing_model": breakdown,
    }


# ============================================================================
# USAGE OPTIMIZATION
# ============================================================================

def _by_resource(records: Iterable) -> Dict[str, List]:
    resources: Dict[str, List] = defaultdict(list)
    for record in records:
        if record.resource_id:
            resources[record.resource_id].append(record)
    return resources


def _monthly_cost(rows: List) -> float:
    days = {r.usage_date.date() for r in rows}
    return sum(r.amount for r in rows) / len(days) * MONTH_DAYS


def _average_cpu(rows: List) -> Tuple[Optional[float], int]:
    samples = [r.cpu_utilization for r in rows if r.cpu_utilization is not None]
    if not samples:
        return None, 0
    return sum(samples) / len(samples), len(samples)


def rightsizing_candidates(records: List) -> List[Row]:
    """Resources running at 5-40% average CPU, largest savings first."""
    candidates = []
    for resource_id, rows in _by_resource(records).items():
        average, samples = _average_cpu(rows)
        if average is None:
            continue
        for low, high, fraction in RIGHTSIZING_BANDS:
            if low <= average < high:
                monthly = _monthly_cost(rows)
                candidates.append({
                    "resource_id": resource_id,
                    "service": rows[0].service,
                    "resource_type": rows[-1].resource_type,
                    "average_cpu": round(average, 2),
                    "monthly_cost": _money(monthly),
                    "estimated_savings": _money(monthly * fraction),
                    "confidence": "HIGH" if samples >= HIGH_CONFIDENCE_SAMPLES else "MEDIUM",
                })
                break
    candidates.sort(key=lambda c: (-c["estimated_savings"], c["resource_id"]))
    return candidates


def waste_candidates(records: List) -> List[Row]:
    """
    Resources paid for but not used.

    idle: average CPU under 5%. unused: usage reported and always zero.
    """
    candidates = []
    for resource_id, rows in _by_resource(records).items():
        average, _ = _average_cpu(rows)
        usage = [r.usage_quantity for r in rows if r.usage_quantity is not None]
        if average is not None and average < IDLE_CPU_THRESHOLD:
            reason = "idle"
        elif average is None and usage and not any(usage):
            reason = "unused"
        else:
            continue
        monthly = _monthly_cost(rows)
        candidates.append({
            "resource_id": resource_id,
            "service": rows[0].service,
            "resource_type": rows[-1].resource_type,
            "reason": reason,
            "average_cpu": round(average, 2) if average is not None else None,
            "monthly_cost": _money(monthly),
            "estimated_savings": _money(monthly),
        })
    candidates.sort(key=lambda c: (-c["estimated_savings"], c["resource_id"]))
    return candidates
