"""
Waiter endpoints: availability listing, availability toggle, performance.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from rest_api.routers.assignment._base import (
    authorize_waiter_access,
    get_engine,
    get_reports,
    is_management,
    require_staff,
    resolve_scope,
)
from rest_api.services.assignment import AssignmentEngine, AssignmentReports
from shared.infrastructure.db import get_db
from shared.utils.dates import as_utc, resolve_period
from shared.utils.exceptions import ForbiddenError
from shared.utils.responses import success_response
from shared.utils.schemas import AvailabilityUpdateRequest, WaiterId


router = APIRouter(tags=["assignment-waiters"])


@router.get("/waiters/available")
def get_available_waiters(
    hotel_id: int | None = Query(default=None, alias="hotelId", gt=0),
    branch_id: int | None = Query(default=None, alias="branchId", gt=0),
    db: Session = Depends(get_db),
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_staff),
) -> dict:
    """
    On-shift waiters in scope (available, active, in the admin chain), with
    waiters at capacity flagged by can_take_orders, plus a capacity summary
    over every waiter in scope.
    """
    hotel_id, branch_id = resolve_scope(db, user, hotel_id, branch_id)
    waiters = engine.registry.list_on_shift_waiters(branch_id=branch_id, hotel_id=hotel_id)
    return success_response(
        {
            "waiters": [
                {
                    "id": w.id,
                    "name": w.full_name,
                    "branch_id": w.branch_id,
                    "manager_id": w.manager_id,
                    "status": w.status,
                    "is_available": w.is_available,
                    "availability_reason": w.availability_reason,
                    "active_orders_count": w.active_orders_count,
                    "max_capacity": w.max_capacity,
                    "remaining_capacity": max(0, w.max_capacity - w.active_orders_count),
                    "can_take_orders": w.has_capacity,
                    "last_assigned_at": as_utc(w.last_assigned_at),
                }
                for w in waiters
            ],
            "summary": engine.registry.get_utilization(branch_id=branch_id, hotel_id=hotel_id),
        },
        "Waiters retrieved",
    )


@router.put("/waiters/{waiter_id}/availability")
def update_waiter_availability(
    waiter_id: WaiterId,
    body: AvailabilityUpdateRequest,
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_staff),
) -> dict:
    """
    Waiters toggle their own availability; management may also change
    another waiter's availability and capacity.
    """
    waiter = engine.registry.get_waiter(waiter_id)
    authorize_waiter_access(user, waiter, "update this waiter's availability")
    if body.max_orders_capacity is not None and not is_management(user):
        raise ForbiddenError("change waiter capacity", user_id=user.get("sub"), waiter_id=waiter_id)

    result = engine.update_waiter_availability(
        waiter_id,
        body.is_available,
        reason=body.reason,
        status=body.status,
        max_capacity=body.max_orders_capacity,
        actor_id=user["sub"],
    )
    return success_response(result, "Waiter availability updated")


@router.get("/waiters/{waiter_id}/performance")
def get_waiter_performance(
    waiter_id: WaiterId,
    days: int | None = Query(default=None, ge=1, le=365),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    engine: AssignmentEngine = Depends(get_engine),
    reports: AssignmentReports = Depends(get_reports),
    user: dict = Depends(require_staff),
) -> dict:
    """Performance over ?days (default 7) or an explicit startDate/endDate window."""
    waiter = engine.registry.get_waiter(waiter_id)
    authorize_waiter_access(user, waiter, "view this waiter's performance")
    start, end = resolve_period(start_date, end_date, default_days=7, days=days)
    return success_response(
        reports.waiter_performance(waiter_id, start, end),
        "Waiter performance retrieved",
    )
