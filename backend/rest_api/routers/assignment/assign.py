"""
Assignment endpoints: manual override, order hooks, stats and dry runs.
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from rest_api.models import Order
from rest_api.routers.assignment._base import (
    get_engine,
    require_management,
    require_staff,
    resolve_scope,
)
from rest_api.services.assignment import AssignmentEngine
from shared.config.settings import settings
from shared.infrastructure.db import get_db
from shared.security.auth import require_branch_access
from shared.security.rate_limit import limiter
from shared.utils.exceptions import NotFoundError
from shared.utils.responses import success_response
from shared.utils.schemas import (
    AutoAssignRequest,
    ManualAssignRequest,
    OrderId,
    ReleaseRequest,
    SimulationRequest,
)


router = APIRouter(tags=["assignment"])


def _load_order_for(db: Session, user: dict, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None or not order.is_active:
        raise NotFoundError("Order", order_id)
    require_branch_access(user, order.hotel_id, order.branch_id)
    return order


@router.post("/manual-assign")
@limiter.limit(settings.rate_limit_manual_assign)
def manual_assign(
    request: Request,
    body: ManualAssignRequest,
    db: Session = Depends(get_db),
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_management),
) -> dict:
    """Assign an order to a specific waiter (management override)."""
    _load_order_for(db, user, body.order_id)
    outcome = engine.manual_assign(
        body.order_id,
        body.waiter_id,
        reason=body.reason,
        actor_id=user["sub"],
        priority=body.priority,
    )
    return success_response(outcome.to_dict(), "Order assigned manually")


@router.post("/orders/{order_id}/auto-assign")
def auto_assign(
    order_id: OrderId,
    body: AutoAssignRequest | None = None,
    db: Session = Depends(get_db),
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_staff),
) -> dict:
    """
    Payment-completion hook: assign the order now or queue it.
    """
    body = body or AutoAssignRequest()
    order = _load_order_for(db, user, order_id)
    outcome = engine.automatic_assign(
        order.id,
        method=body.method,
        require_immediate=body.require_immediate,
        priority=body.priority,
        actor_id=user["sub"],
    )
    message = "Order assigned" if outcome.is_assigned else "No waiter available, order queued"
    return success_response(outcome.to_dict(), message)


@router.post("/orders/{order_id}/release")
def release_order(
    order_id: OrderId,
    body: ReleaseRequest | None = None,
    db: Session = Depends(get_db),
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_staff),
) -> dict:
    """Terminal-status hook: free the waiter's slot and drain the queue."""
    body = body or ReleaseRequest()
    _load_order_for(db, user, order_id)
    result = engine.release_on_terminal(order_id, body.status)
    message = "Order released" if result["released"] else "Order already released"
    return success_response(result, message)


@router.get("/stats")
def get_stats(
    hotel_id: int | None = Query(default=None, alias="hotelId", gt=0),
    branch_id: int | None = Query(default=None, alias="branchId", gt=0),
    db: Session = Depends(get_db),
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_staff),
) -> dict:
    hotel_id, branch_id = resolve_scope(db, user, hotel_id, branch_id)
    stats = engine.get_stats(hotel_id=hotel_id, branch_id=branch_id)
    return success_response(stats, "Assignment statistics retrieved")


@router.post("/test-assignment")
def test_assignment(
    body: SimulationRequest,
    db: Session = Depends(get_db),
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_management),
) -> dict:
    """Dry run of the assignment path; nothing is written or published."""
    resolve_scope(db, user, body.hotel_id, body.branch_id)
    result = engine.test_assignment(body.hotel_id, body.branch_id, body.test_type)
    return success_response(result, "Assignment test completed")
