"""
Organizational hierarchy checks.

A branch is only operable when the chain hotel -> branch is consistent and
both are owned by the same admin. Managers record their owning admin in
created_by_id; waiters point at their manager through manager_id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from rest_api.models import Branch, Hotel, Staff
from shared.config.constants import HierarchyErrors, Roles
from shared.utils.exceptions import InvalidHierarchyError


@dataclass
class HierarchyCheck:
    is_valid: bool
    admin_id: int | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.is_valid:
            return {"is_valid": True, "admin_id": self.admin_id}
        return {"is_valid": False, "reason": self.reason}


def validate_hierarchy(db: Session, hotel_id: int, branch_id: int | None = None) -> HierarchyCheck:
    """
    Structural validation of hotel (and optionally branch).

    Never raises; the outcome carries the first broken link as `reason`.
    """
    hotel = db.get(Hotel, hotel_id)
    if hotel is None or not hotel.is_active:
        return HierarchyCheck(False, reason=HierarchyErrors.HOTEL_NOT_FOUND)
    if hotel.admin_id is None:
        return HierarchyCheck(False, reason=HierarchyErrors.HOTEL_NO_ADMIN)

    if branch_id is None:
        return HierarchyCheck(True, admin_id=hotel.admin_id)

    branch = db.get(Branch, branch_id)
    if branch is None or not branch.is_active:
        return HierarchyCheck(False, reason=HierarchyErrors.BRANCH_NOT_FOUND)
    if branch.admin_id is None:
        return HierarchyCheck(False, reason=HierarchyErrors.BRANCH_NO_ADMIN)
    if branch.hotel_id != hotel.id:
        return HierarchyCheck(False, reason=HierarchyErrors.BRANCH_WRONG_HOTEL)
    if branch.admin_id != hotel.admin_id:
        return HierarchyCheck(False, reason=HierarchyErrors.ADMIN_MISMATCH)

    return HierarchyCheck(True, admin_id=branch.admin_id)


def require_valid_hierarchy(db: Session, hotel_id: int, branch_id: int | None = None) -> int:
    """Validate and return the owning admin id, or raise InvalidHierarchyError."""
    check = validate_hierarchy(db, hotel_id, branch_id)
    if not check.is_valid:
        raise InvalidHierarchyError(check.reason, hotel_id=hotel_id, branch_id=branch_id)
    return check.admin_id


def require_waiter_in_chain(waiter: Staff, branch_id: int, admin_id: int) -> None:
    """
    The waiter must work in the branch and report to a manager created by
    the branch admin.
    """
    if waiter.role != Roles.WAITER:
        raise InvalidHierarchyError("Staff member is not a waiter", waiter_id=waiter.id)
    if waiter.branch_id != branch_id:
        raise InvalidHierarchyError(
            "Waiter does not belong to the order's branch",
            waiter_id=waiter.id,
            branch_id=branch_id,
        )
    manager = waiter.manager
    if manager is None:
        raise InvalidHierarchyError("Waiter has no assigned manager", waiter_id=waiter.id)
    if manager.created_by_id != admin_id:
        raise InvalidHierarchyError(
            "Waiter's manager is not managed by the branch admin",
            waiter_id=waiter.id,
            manager_id=manager.id,
        )


def _staff_summary(staff: Staff) -> dict[str, Any]:
    return {
        "id": staff.id,
        "name": staff.full_name,
        "email": staff.email,
        "role": staff.role,
        "branch_id": staff.branch_id,
    }


def _waiter_summary(waiter: Staff) -> dict[str, Any]:
    return {
        **_staff_summary(waiter),
        "status": waiter.status,
        "is_available": waiter.is_available,
        "active_orders_count": waiter.active_orders_count,
        "max_capacity": waiter.max_capacity,
    }


def staff_hierarchy(db: Session, hotel_id: int, branch_id: int | None = None) -> dict[str, Any]:
    """
    Validation outcome plus the staff tree: admin, hotel, branch, managers
    with their waiters, and waiters without a manager.
    """
    check = validate_hierarchy(db, hotel_id, branch_id)
    hotel = db.get(Hotel, hotel_id)
    branch = db.get(Branch, branch_id) if branch_id is not None else None

    admin = db.get(Staff, hotel.admin_id) if hotel is not None and hotel.admin_id else None

    stmt = select(Staff).where(
        Staff.hotel_id == hotel_id,
        Staff.is_active.is_(True),
        Staff.role.in_([Roles.MANAGER, Roles.WAITER]),
    )
    if branch_id is not None:
        stmt = stmt.where(Staff.branch_id == branch_id)
    members = db.scalars(stmt.order_by(Staff.id)).all()

    managers = [m for m in members if m.role == Roles.MANAGER]
    waiters = [w for w in members if w.role == Roles.WAITER]
    manager_ids = {m.id for m in managers}

    return {
        "hierarchy_validation": check.to_dict(),
        "hierarchy_structure": {
            "admin": _staff_summary(admin) if admin is not None else None,
            "hotel": {"id": hotel.id, "name": hotel.name} if hotel is not None else None,
            "branch": (
                {"id": branch.id, "name": branch.name, "hotel_id": branch.hotel_id}
                if branch is not None else None
            ),
            "managers": [
                {
                    **_staff_summary(m),
                    "created_by_id": m.created_by_id,
                    "waiters": [_waiter_summary(w) for w in waiters if w.manager_id == m.id],
                }
                for m in managers
            ],
            "unmanaged_waiters": [
                _waiter_summary(w) for w in waiters if w.manager_id not in manager_ids
            ],
        },
        "total_valid_waiters": sum(1 for w in waiters if w.is_eligible) if check.is_valid else 0,
    }
