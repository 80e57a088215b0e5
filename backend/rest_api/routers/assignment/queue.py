"""
Queue endpoints: inspect the waiting list, re-prioritize, remove.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from rest_api.routers.assignment._base import (
    get_engine,
    require_management,
    require_staff,
    resolve_scope,
)
from rest_api.services.assignment import AssignmentEngine
from shared.infrastructure.db import get_db
from shared.security.auth import require_branch_access
from shared.utils.responses import success_response
from shared.utils.schemas import OrderId, PriorityUpdateRequest


router = APIRouter(tags=["assignment-queue"])


@router.get("/queue")
def get_queue(
    hotel_id: int | None = Query(default=None, alias="hotelId", gt=0),
    branch_id: int | None = Query(default=None, alias="branchId", gt=0),
    db: Session = Depends(get_db),
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_staff),
) -> dict:
    hotel_id, branch_id = resolve_scope(db, user, hotel_id, branch_id)
    return success_response(
        {
            "entries": engine.queue.list_entries(branch_id=branch_id, hotel_id=hotel_id),
            "summary": engine.queue.stats(branch_id=branch_id, hotel_id=hotel_id),
        },
        "Assignment queue retrieved",
    )


@router.put("/queue/{order_id}/priority")
def update_queue_priority(
    order_id: OrderId,
    body: PriorityUpdateRequest,
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_management),
) -> dict:
    entry = engine.queue.require_entry(order_id)
    require_branch_access(user, entry.hotel_id, entry.branch_id)
    placement = engine.update_queue_priority(order_id, body.priority, body.reason)
    return success_response(placement.to_dict(), "Queue priority updated")


@router.delete("/queue/{order_id}")
def remove_from_queue(
    order_id: OrderId,
    engine: AssignmentEngine = Depends(get_engine),
    user: dict = Depends(require_management),
) -> dict:
    entry = engine.queue.require_entry(order_id)
    require_branch_access(user, entry.hotel_id, entry.branch_id)
    return success_response(engine.remove_from_queue(order_id), "Order removed from queue")
