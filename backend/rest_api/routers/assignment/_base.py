"""
Shared dependencies and helpers for assignment routers.

This module provides the role dependencies, scope resolution and service
factories used across all assignment sub-routers.
"""

from typing import Any

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from rest_api.models import Branch, Hotel, Staff
from rest_api.services.assignment import (
    AssignmentEngine,
    AssignmentReports,
    MonitoringLoop,
    get_monitoring_loop,
)
from shared.config.constants import MANAGEMENT_ROLES, ALL_STAFF_ROLES, Roles
from shared.infrastructure.db import get_db
from shared.infrastructure.events import EventPublisher, get_redis_sync_client
from shared.security.auth import (
    can_access_branch,
    current_user_context as current_user,
    has_any_role,
    require_branch_access,
    require_roles,
)
from shared.utils.exceptions import ForbiddenError, NotFoundError, ValidationError


# =============================================================================
# Role-based Dependencies
# =============================================================================


def require_staff(user: dict = Depends(current_user)) -> dict:
    """Dependency that requires any staff role."""
    require_roles(user, ALL_STAFF_ROLES)
    return user


def require_management(user: dict = Depends(current_user)) -> dict:
    """Dependency that requires SUPER_ADMIN, ADMIN or MANAGER."""
    require_roles(user, MANAGEMENT_ROLES)
    return user


def require_super_admin(user: dict = Depends(current_user)) -> dict:
    """Dependency that requires SUPER_ADMIN."""
    require_roles(user, [Roles.SUPER_ADMIN])
    return user


def is_management(user: dict) -> bool:
    return has_any_role(user, MANAGEMENT_ROLES)


# =============================================================================
# Service factories
# =============================================================================


def get_event_publisher(request: Request) -> EventPublisher:
    """Publisher created by the lifespan, or lazily on first use."""
    publisher = getattr(request.app.state, "publisher", None)
    if publisher is None:
        publisher = EventPublisher(get_redis_sync_client())
        request.app.state.publisher = publisher
    return publisher


def get_engine(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> AssignmentEngine:
    return AssignmentEngine(db, publisher)


def get_reports(db: Session = Depends(get_db)) -> AssignmentReports:
    return AssignmentReports(db)


def get_monitor(request: Request) -> MonitoringLoop:
    monitor = getattr(request.app.state, "monitoring_loop", None)
    if monitor is None:
        monitor = get_monitoring_loop(get_event_publisher(request))
        request.app.state.monitoring_loop = monitor
    return monitor


# =============================================================================
# Scope helpers
# =============================================================================


def resolve_scope(
    db: Session,
    user: dict[str, Any],
    hotel_id: int | None,
    branch_id: int | None,
) -> tuple[int | None, int | None]:
    """
    Turn optional hotelId/branchId query parameters into a scope the caller
    may read.

    - branchId given: the branch must exist (and belong to hotelId if given)
    - only hotelId: hotel-wide, for SUPER_ADMIN or the hotel's ADMIN
    - neither: system-wide, SUPER_ADMIN only

    Raises:
        NotFoundError, ForbiddenError, ValidationError
    """
    if branch_id is not None:
        branch = db.get(Branch, branch_id)
        if branch is None or not branch.is_active:
            raise NotFoundError("Branch", branch_id)
        if hotel_id is not None and branch.hotel_id != hotel_id:
            raise ValidationError(
                "Branch does not belong to the specified hotel",
                errors=[{"field": "branchId", "message": "not part of hotelId"}],
            )
        require_branch_access(user, branch.hotel_id, branch.id)
        return branch.hotel_id, branch.id

    if hotel_id is not None:
        hotel = db.get(Hotel, hotel_id)
        if hotel is None or not hotel.is_active:
            raise NotFoundError("Hotel", hotel_id)
        if not can_access_branch(user, hotel_id, None):
            raise ForbiddenError("access this hotel", user_id=user.get("sub"), hotel_id=hotel_id)
        return hotel_id, None

    if Roles.SUPER_ADMIN in user.get("roles", []):
        return None, None
    raise ValidationError(
        "hotelId or branchId is required",
        errors=[{"field": "hotelId", "message": "required"}],
    )


def authorize_waiter_access(user: dict[str, Any], waiter: Staff, action: str) -> bool:
    """
    The waiter itself, or management with access to the waiter's branch.

    Returns True when the caller is acting on its own record.
    """
    if user.get("sub") == waiter.id:
        return True
    if not is_management(user):
        raise ForbiddenError(action, user_id=user.get("sub"), waiter_id=waiter.id)
    require_branch_access(user, waiter.hotel_id, waiter.branch_id)
    return False
