"""
Waiter Registry.

Source of truth for per-waiter load. Every change to active_orders_count goes
through a conditional UPDATE so the count can never leave
[0, max_capacity], even when two processes race on the same waiter:

    increment:  UPDATE staff SET count = count + 1 WHERE id = :id AND count < max_capacity
    decrement:  UPDATE staff SET count = count - 1 WHERE id = :id AND count > 0

A zero rowcount on increment means the read the caller made was stale.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session, aliased

from rest_api.models import Branch, Staff
from shared.config.constants import Roles, WaiterStatus
from shared.config.logging import assignment_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import safe_commit
from shared.infrastructure.events import EventPublisher
from shared.utils.dates import utc_now
from shared.utils.exceptions import CapacityExceededError, NotFoundError, ValidationError


class WaiterRegistry:
    """
    Reads and mutates waiter availability and load.

    Load mutations only flush; the caller (AssignmentEngine) owns the
    transaction. set_availability is a standalone operation and commits.
    """

    def __init__(self, db: Session, publisher: EventPublisher | None = None):
        self._db = db
        self._publisher = publisher

    # =========================================================================
    # Queries
    # =========================================================================

    def _waiters(self):
        return select(Staff).where(Staff.role == Roles.WAITER, Staff.is_active.is_(True))

    def get_waiter(self, waiter_id: int) -> Staff:
        waiter = self._db.scalar(self._waiters().where(Staff.id == waiter_id))
        if waiter is None:
            raise NotFoundError("Waiter", waiter_id)
        return waiter

    def _on_shift_in_chain(self):
        """
        Available, active waiters whose manager was created by the admin of
        the waiter's branch. Waiters without a manager are left out.
        """
        manager = aliased(Staff)
        return (
            self._waiters()
            .join(manager, Staff.manager_id == manager.id)
            .join(Branch, Staff.branch_id == Branch.id)
            .where(
                manager.is_active.is_(True),
                manager.created_by_id == Branch.admin_id,
                Staff.is_available.is_(True),
                Staff.status == WaiterStatus.ACTIVE,
            )
        )

    def get_available_waiters(self, branch_id: int) -> list[Staff]:
        """
        Eligible waiters of a branch: in the admin chain, available, status
        active and below capacity. Sorted by (load, id).
        """
        stmt = (
            self._on_shift_in_chain()
            .where(
                Staff.branch_id == branch_id,
                Staff.active_orders_count < Staff.max_capacity,
            )
            .order_by(Staff.active_orders_count, Staff.id)
        )
        return list(self._db.scalars(stmt).all())

    def list_on_shift_waiters(self, branch_id: int | None = None, hotel_id: int | None = None) -> list[Staff]:
        """Like get_available_waiters, but keeps waiters that are at capacity."""
        stmt = self._on_shift_in_chain()
        if branch_id is not None:
            stmt = stmt.where(Staff.branch_id == branch_id)
        if hotel_id is not None:
            stmt = stmt.where(Staff.hotel_id == hotel_id)
        return list(self._db.scalars(stmt.order_by(Staff.branch_id, Staff.id)).all())

    def get_utilization(self, branch_id: int | None = None, hotel_id: int | None = None) -> dict[str, Any]:
        """
        Aggregate load over the waiters in scope.

        utilization_percentage = sum(active) / sum(capacity) * 100, or 0
        when there is no capacity at all.
        """
        eligible = (
            Staff.is_available.is_(True)
            & (Staff.status == WaiterStatus.ACTIVE)
            & (Staff.active_orders_count < Staff.max_capacity)
        )
        stmt = select(
            func.count(Staff.id),
            func.coalesce(func.sum(Staff.max_capacity), 0),
            func.coalesce(func.sum(Staff.active_orders_count), 0),
            func.coalesce(func.sum(case((eligible, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Staff.active_orders_count > 0, 1), else_=0)), 0),
            func.coalesce(
                func.sum(case((Staff.active_orders_count >= Staff.max_capacity, 1), else_=0)), 0
            ),
        ).where(Staff.role == Roles.WAITER, Staff.is_active.is_(True))
        if branch_id is not None:
            stmt = stmt.where(Staff.branch_id == branch_id)
        if hotel_id is not None:
            stmt = stmt.where(Staff.hotel_id == hotel_id)

        total, capacity, used, available, busy, at_capacity = self._db.execute(stmt).one()
        capacity = int(capacity)
        used = int(used)
        return {
            "total_waiters": int(total),
            "available_waiters": int(available),
            "busy_waiters": int(busy),
            "at_capacity_waiters": int(at_capacity),
            "total_capacity": capacity,
            "used_capacity": used,
            "utilization_percentage": round(used / capacity * 100, 1) if capacity else 0.0,
        }

    # =========================================================================
    # Load mutations (conditional updates)
    # =========================================================================

    def try_increment_load(self, waiter_id: int) -> Staff | None:
        """
        Take one slot on the waiter. Returns the refreshed waiter, or None
        when the waiter was already full at write time.
        """
        self._db.flush()
        result = self._db.execute(
            update(Staff)
            .where(Staff.id == waiter_id, Staff.active_orders_count < Staff.max_capacity)
            .values(
                active_orders_count=Staff.active_orders_count + 1,
                total_assignments=Staff.total_assignments + 1,
                last_assigned_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return self._refresh(waiter_id)

    def increment_load(self, waiter_id: int) -> Staff:
        """
        Take one slot on the waiter.

        Raises:
            NotFoundError: waiter does not exist.
            CapacityExceededError: waiter is full.
        """
        waiter = self.try_increment_load(waiter_id)
        if waiter is None:
            current = self.get_waiter(waiter_id)
            raise CapacityExceededError(current.id, current.max_capacity)
        return waiter

    def decrement_load(self, waiter_id: int, completed: bool = False) -> Staff:
        """
        Free one slot. Clamped at zero: a decrement on an idle waiter is
        logged and ignored.
        """
        self._db.flush()
        values: dict[str, Any] = {"active_orders_count": Staff.active_orders_count - 1}
        if completed:
            values["completed_orders"] = Staff.completed_orders + 1
        result = self._db.execute(
            update(Staff)
            .where(Staff.id == waiter_id, Staff.active_orders_count > 0)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("Load decrement ignored, waiter already idle", waiter_id=waiter_id)
        return self._refresh(waiter_id)

    def set_load(self, waiter_id: int, count: int) -> None:
        """Overwrite the counter. Only used by startup reconciliation."""
        self._db.execute(
            update(Staff)
            .where(Staff.id == waiter_id)
            .values(active_orders_count=count)
            .execution_options(synchronize_session=False)
        )

    def _refresh(self, waiter_id: int) -> Staff:
        waiter = self._db.get(Staff, waiter_id)
        if waiter is None:
            raise NotFoundError("Waiter", waiter_id)
        self._db.refresh(waiter)
        return waiter

    # =========================================================================
    # Availability
    # =========================================================================

    def set_availability(
        self,
        waiter_id: int,
        is_available: bool,
        reason: str | None = None,
        status: str | None = None,
        max_capacity: int | None = None,
        actor_id: int | None = None,
    ) -> Staff:
        """
        Toggle availability, optionally changing status and capacity.

        Commits and publishes waiter:availability_changed. Lowering capacity
        below the current load is rejected; existing assignments are never
        revoked.
        """
        waiter = self.get_waiter(waiter_id)

        if status is not None and status not in WaiterStatus.ALL:
            raise ValidationError(
                f"Invalid waiter status '{status}'",
                errors=[{"field": "status", "message": f"must be one of: {', '.join(WaiterStatus.ALL)}"}],
            )

        if max_capacity is not None:
            limit = settings.assignment_max_capacity_limit
            if not 1 <= max_capacity <= limit:
                raise ValidationError(
                    f"Capacity must be between 1 and {limit}",
                    errors=[{"field": "maxOrdersCapacity", "message": f"must be between 1 and {limit}"}],
                )
            self._db.flush()
            result = self._db.execute(
                update(Staff)
                .where(Staff.id == waiter_id, Staff.active_orders_count <= max_capacity)
                .values(max_capacity=max_capacity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self._db.rollback()
                raise ValidationError(
                    "Capacity cannot be lower than the waiter's current active orders",
                    errors=[{"field": "maxOrdersCapacity", "message": "below current load"}],
                    waiter_id=waiter_id,
                )
            waiter = self._refresh(waiter_id)

        waiter.is_available = is_available
        waiter.availability_reason = reason
        if status is not None:
            waiter.status = status
        waiter.set_updated_by(actor_id)
        safe_commit(self._db)

        logger.info(
            "Waiter availability changed",
            waiter_id=waiter.id,
            branch_id=waiter.branch_id,
            is_available=is_available,
            status=waiter.status,
            max_capacity=waiter.max_capacity,
        )

        if self._publisher is not None and waiter.branch_id is not None:
            self._publisher.waiter_availability_changed(
                waiter_id=waiter.id,
                branch_id=waiter.branch_id,
                hotel_id=waiter.hotel_id,
                is_available=waiter.is_available,
                status=waiter.status,
                reason=reason,
                active_orders_count=waiter.active_orders_count,
                max_capacity=waiter.max_capacity,
            )
        return waiter
