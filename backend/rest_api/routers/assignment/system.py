"""
System endpoints: health, metrics, round-robin reset, forced monitoring.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from rest_api.routers.assignment._base import (
    get_engine,
    get_monitor,
    get_reports,
    require_management,
    require_super_admin,
    resolve_scope,
)
from rest_api.services.assignment import AssignmentEngine, AssignmentReports, MonitoringLoop
from shared.config.constants import Roles
from shared.config.settings import settings
from shared.infrastructure.db import get_db
from shared.security.rate_limit import limiter
from shared.utils.dates import resolve_period
from shared.utils.exceptions import ForbiddenError
from shared.utils.responses import success_response
from shared.utils.schemas import ResetRoundRobinRequest


router = APIRouter(tags=["assignment-system"])


@router.get("/system/health")
def get_system_health(
    reports: AssignmentReports = Depends(get_reports),
    monitor: MonitoringLoop = Depends(get_monitor),
    user: dict = Depends(require_management),
) -> dict:
    health = reports.system_health(monitor.status())
    return success_response(health, "System health retrieved")


@router.get("/system/metrics")
def get_system_metrics(
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    reports: AssignmentReports = Depends(get_reports),
    monitor: MonitoringLoop = Depends(get_monitor),
    user: dict = Depends(require_management),
) -> dict:
    """Assignment metrics for a window (default: last 30 days)."""
    start, end = resolve_period(start_date, end_date, default_days=30)
    metrics = reports.system_metrics(start, end, monitor.status())
    return success_response(metrics, "System metrics retrieved")


@router.post("/system/reset-round-robin")
def reset_round_robin(
    body: ResetRoundRobinRequest,
    db: Session = Depends(get_db),
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_management),
) -> dict:
    """
    Clear the fairness cursor of a branch, of every branch of a hotel, or
    (SUPER_ADMIN only, empty body) of every branch.
    """
    if body.hotel_id is None and body.branch_id is None:
        if Roles.SUPER_ADMIN not in user.get("roles", []):
            raise ForbiddenError("reset round-robin for every branch", user_id=user.get("sub"))
        hotel_id, branch_id = None, None
    else:
        hotel_id, branch_id = resolve_scope(db, user, body.hotel_id, body.branch_id)

    count = engine.reset_round_robin(hotel_id=hotel_id, branch_id=branch_id)
    return success_response(
        {"hotel_id": hotel_id, "branch_id": branch_id, "cursors_reset": count},
        "Round-robin reset",
    )


@router.post("/system/force-monitoring")
@limiter.limit(settings.rate_limit_force_monitoring)
async def force_monitoring(
    request: Request,
    monitor: MonitoringLoop = Depends(get_monitor),
    user: dict = Depends(require_super_admin),
) -> dict:
    """Run one monitoring cycle now. Skipped if a cycle is already running."""
    result = await monitor.run_cycle(trigger="manual")
    message = "Monitoring cycle skipped, another cycle is running" if result["skipped"] else "Monitoring cycle completed"
    return success_response(result, message)
