"""
Assignment Engine.

Orchestrates waiter selection, load accounting, queueing and history for
orders of a branch.

Order lifecycle as seen by the engine:
    unassigned -> queued -> assigned(method) -> [reassigned] -> released

Every mutating operation follows the same shape:
    1. validate (no mutation yet)
    2. take the branch lock (in-process) and the cursor row lock (database)
    3. mutate, flush, commit
    4. publish events collected during step 3

A failure anywhere in steps 2-3 rolls the session back and drops the
collected events, so listeners never see a change that did not persist.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from rest_api.models import Branch, Order, OrderAssignmentHistory, OrderQueueEntry, RoundRobinCursor, Staff
from shared.config.constants import (
    AssignmentMethod,
    HistoryAction,
    OrderStatus,
    PaymentStatus,
    QueuePriority,
    Roles,
    SimulationType,
    WaiterStatus,
)
from shared.config.logging import assignment_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import safe_commit
from shared.infrastructure.events import EventPublisher
from shared.utils.dates import as_utc, utc_now
from shared.utils.responses import camelize
from shared.utils.exceptions import (
    AlreadyAssignedError,
    CapacityExceededError,
    InvalidHierarchyError,
    InvalidStateError,
    NoWaitersAvailableError,
    NotFoundError,
    ValidationError,
)

from .hierarchy import require_valid_hierarchy, require_waiter_in_chain, validate_hierarchy
from .locks import BranchLockRegistry, get_branch_locks
from .policy import Candidate, select_waiter
from .queue import AssignmentQueue, QueuePlacement
from .registry import WaiterRegistry


@dataclass
class AssignmentOutcome:
    """Result of an assignment attempt: either assigned or queued."""

    status: str
    order_id: int
    branch_id: int
    hotel_id: int
    method: str
    waiter_id: int | None = None
    waiter_name: str | None = None
    assigned_at: datetime | None = None
    previous_waiter_id: int | None = None
    placement: QueuePlacement | None = None

    @property
    def is_assigned(self) -> bool:
        return self.status == "assigned"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status,
            "order_id": self.order_id,
            "branch_id": self.branch_id,
            "hotel_id": self.hotel_id,
            "assignment_method": self.method,
        }
        if self.is_assigned:
            data.update(
                waiter_id=self.waiter_id,
                waiter_name=self.waiter_name,
                assigned_at=self.assigned_at,
            )
            if self.previous_waiter_id is not None:
                data["previous_waiter_id"] = self.previous_waiter_id
        elif self.placement is not None:
            data.update(
                position=self.placement.position,
                estimated_wait_minutes=self.placement.estimated_wait_minutes,
                queue_length=self.placement.queue_length,
                priority=self.placement.priority,
            )
        return data


def _waiter_brief(waiter: Staff) -> dict[str, Any]:
    return {
        "id": waiter.id,
        "name": waiter.full_name,
        "active_orders_count": waiter.active_orders_count,
        "max_capacity": waiter.max_capacity,
        "last_assigned_at": as_utc(waiter.last_assigned_at),
    }


class AssignmentEngine:
    """
    Assignment operations for one database session.

    Instances are cheap; build one per request (see the router dependency)
    or per monitoring sweep.
    """

    def __init__(
        self,
        db: Session,
        publisher: EventPublisher | None = None,
        locks: BranchLockRegistry | None = None,
    ):
        self._db = db
        self._publisher = publisher
        self._locks = locks or get_branch_locks()
        self.registry = WaiterRegistry(db, publisher)
        self.queue = AssignmentQueue(db)
        self._pending_events: list[Callable[[], Any]] = []

    # =========================================================================
    # Transaction and event plumbing
    # =========================================================================

    def _emit(self, fn: Callable[..., Any], **kwargs: Any) -> None:
        """Defer a publisher call until the current transaction commits."""
        if self._publisher is not None:
            self._pending_events.append(lambda: fn(**kwargs))

    def _flush_events(self) -> None:
        events, self._pending_events = self._pending_events, []
        for send in events:
            send()

    def _abort(self) -> None:
        self._pending_events = []
        self._db.rollback()

    def _lock_cursor(self, branch_id: int) -> RoundRobinCursor:
        """
        Lock (creating if needed) the branch cursor row. Holding this lock
        serializes assignment for the branch across processes.
        """
        cursor = self._db.scalar(
            select(RoundRobinCursor)
            .where(RoundRobinCursor.branch_id == branch_id)
            .with_for_update()
        )
        if cursor is None:
            cursor = RoundRobinCursor(branch_id=branch_id)
            self._db.add(cursor)
            self._db.flush()
        return cursor

    def _get_order(self, order_id: int) -> Order:
        order = self._db.get(Order, order_id)
        if order is None or not order.is_active:
            raise NotFoundError("Order", order_id)
        return order

    def _queue_summary(self, branch_id: int) -> dict[str, Any]:
        return camelize(self.queue.stats(branch_id=branch_id))

    def _emit_queue_updated(self, branch_id: int, hotel_id: int) -> None:
        if self._publisher is None:
            return
        # Summary is computed now, inside the transaction, so it matches what commits
        summary = self._queue_summary(branch_id)
        self._emit(
            self._publisher.queue_updated,
            branch_id=branch_id,
            hotel_id=hotel_id,
            summary=summary,
        )

    # =========================================================================
    # Core assignment step (caller holds the branch lock)
    # =========================================================================

    def _record_assignment(
        self,
        order: Order,
        waiter: Staff,
        method: AssignmentMethod,
        cursor: RoundRobinCursor,
        reason: str | None = None,
        actor_id: int | None = None,
        previous_waiter_id: int | None = None,
    ) -> AssignmentOutcome:
        now = utc_now()
        order.staff_id = waiter.id
        order.assignment_method = method.value
        order.assigned_at = now
        order.set_updated_by(actor_id)

        self._db.add(
            OrderAssignmentHistory(
                order_id=order.id,
                staff_id=waiter.id,
                branch_id=order.branch_id,
                action=HistoryAction.ASSIGNED,
                method=method.value,
                reason=reason,
                actor_id=actor_id,
            )
        )

        cursor.last_waiter_id = waiter.id
        cursor.version += 1
        cursor.updated_at = now

        if self.queue.discard(order.id):
            self._emit_queue_updated(order.branch_id, order.hotel_id)
        self._db.flush()

        if self._publisher is not None:
            self._emit(
                self._publisher.order_assigned,
                order_id=order.id,
                waiter_id=waiter.id,
                waiter_name=waiter.full_name,
                branch_id=order.branch_id,
                hotel_id=order.hotel_id,
                method=method.value,
                customer_id=order.customer_id,
                previous_waiter_id=previous_waiter_id,
                assigned_at=now.isoformat(),
            )

        logger.info(
            "Order assigned",
            order_id=order.id,
            waiter_id=waiter.id,
            branch_id=order.branch_id,
            method=method.value,
            load=f"{waiter.active_orders_count}/{waiter.max_capacity}",
        )
        return AssignmentOutcome(
            status="assigned",
            order_id=order.id,
            branch_id=order.branch_id,
            hotel_id=order.hotel_id,
            method=method.value,
            waiter_id=waiter.id,
            waiter_name=waiter.full_name,
            assigned_at=now,
            previous_waiter_id=previous_waiter_id,
        )

    def _try_assign(
        self,
        order: Order,
        method: AssignmentMethod,
        cursor: RoundRobinCursor,
        reason: str | None = None,
        actor_id: int | None = None,
    ) -> AssignmentOutcome | None:
        """
        Select and take a slot, re-reading candidates when the conditional
        increment loses. None means no waiter could be taken.
        """
        for attempt in range(settings.assignment_cas_max_retries + 1):
            waiters = self.registry.get_available_waiters(order.branch_id)
            if not waiters:
                return None

            chosen = select_waiter(
                method,
                [Candidate.from_staff(w) for w in waiters],
                cursor.last_waiter_id,
            )
            waiter = self.registry.try_increment_load(chosen.waiter_id)
            if waiter is not None:
                return self._record_assignment(order, waiter, method, cursor, reason, actor_id)

            logger.info(
                "Load increment lost a race, re-reading candidates",
                order_id=order.id,
                waiter_id=chosen.waiter_id,
                attempt=attempt + 1,
            )
        return None

    def _drain_locked(self, branch_id: int, cursor: RoundRobinCursor) -> list[AssignmentOutcome]:
        """Assign queued orders of the branch while eligible capacity remains."""
        outcomes: list[AssignmentOutcome] = []
        while self.registry.get_available_waiters(branch_id):
            entry = self.queue.dequeue_next(branch_id)
            if entry is None:
                break

            order = self._db.get(Order, entry.order_id)
            if order is None or order.is_terminal or order.staff_id is not None:
                logger.warning("Dropped stale queue entry", order_id=entry.order_id, branch_id=branch_id)
                continue

            outcome = self._try_assign(
                order, AssignmentMethod.ROUND_ROBIN, cursor, reason="Assigned from queue"
            )
            if outcome is None:
                self.queue.requeue(entry)
                break
            outcomes.append(outcome)

        if outcomes:
            self._emit_queue_updated(branch_id, outcomes[0].hotel_id)
        return outcomes

    # =========================================================================
    # Public operations
    # =========================================================================

    def automatic_assign(
        self,
        order_id: int,
        branch_id: int | None = None,
        hotel_id: int | None = None,
        method: AssignmentMethod = AssignmentMethod.ROUND_ROBIN,
        require_immediate: bool = False,
        priority: QueuePriority | None = None,
        actor_id: int | None = None,
    ) -> AssignmentOutcome:
        """
        Assign an order to the best eligible waiter of its branch, or queue it.

        Raises:
            NotFoundError: unknown order.
            AlreadyAssignedError: order already has a waiter.
            InvalidStateError: order is completed or cancelled.
            InvalidHierarchyError: hotel/branch chain is broken (nothing is queued).
            NoWaitersAvailableError: require_immediate and no eligible waiter.
            QueueFullError: order had to be queued but the branch queue is full.
        """
        if method == AssignmentMethod.MANUAL:
            raise ValidationError("Automatic assignment cannot use the manual method")

        order = self._get_order(order_id)
        if branch_id is not None and branch_id != order.branch_id:
            raise InvalidHierarchyError("Order does not belong to the specified branch", order_id=order_id)
        if hotel_id is not None and hotel_id != order.hotel_id:
            raise InvalidHierarchyError("Order does not belong to the specified hotel", order_id=order_id)
        if order.is_terminal:
            raise InvalidStateError("Order", order.status, OrderStatus.ACTIVE, order_id=order_id)
        if order.staff_id is not None:
            raise AlreadyAssignedError(order.id, order.staff_id)

        require_valid_hierarchy(self._db, order.hotel_id, order.branch_id)

        try:
            with self._locks.hold(order.branch_id):
                cursor = self._lock_cursor(order.branch_id)
                # Re-check under the lock: a concurrent request may have won
                self._db.refresh(order)
                if order.staff_id is not None:
                    raise AlreadyAssignedError(order.id, order.staff_id)

                outcome = self._try_assign(order, method, cursor, actor_id=actor_id)
                if outcome is None:
                    if require_immediate:
                        raise NoWaitersAvailableError(
                            order.branch_id,
                            retry_after=settings.assignment_queue_retry_after,
                            order_id=order.id,
                        )
                    placement = self.queue.enqueue(
                        order, priority or QueuePriority.NORMAL, reason="No eligible waiter"
                    )
                    self._emit_queue_updated(order.branch_id, order.hotel_id)
                    outcome = AssignmentOutcome(
                        status="queued",
                        order_id=order.id,
                        branch_id=order.branch_id,
                        hotel_id=order.hotel_id,
                        method=method.value,
                        placement=placement,
                    )
                elif priority is not None:
                    order.priority = priority.value
                safe_commit(self._db)
        except Exception:
            self._abort()
            raise

        self._flush_events()
        return outcome

    def manual_assign(
        self,
        order_id: int,
        waiter_id: int,
        reason: str,
        actor_id: int | None = None,
        priority: QueuePriority | None = None,
    ) -> AssignmentOutcome:
        """
        Put an order on a specific waiter, bypassing the policy.

        Reassignment writes a "removed" history row and frees a slot on the
        previous waiter before taking one on the new waiter.
        """
        order = self._get_order(order_id)
        if order.is_terminal:
            raise InvalidStateError("Order", order.status, OrderStatus.ACTIVE, order_id=order_id)

        admin_id = require_valid_hierarchy(self._db, order.hotel_id, order.branch_id)
        waiter = self.registry.get_waiter(waiter_id)
        require_waiter_in_chain(waiter, order.branch_id, admin_id)

        if waiter.status != WaiterStatus.ACTIVE:
            raise InvalidStateError("Waiter", waiter.status, [WaiterStatus.ACTIVE], waiter_id=waiter_id)
        if order.staff_id == waiter.id:
            raise AlreadyAssignedError(order.id, waiter.id)
        if not waiter.has_capacity:
            raise CapacityExceededError(waiter.id, waiter.max_capacity, order_id=order_id)

        try:
            with self._locks.hold(order.branch_id):
                cursor = self._lock_cursor(order.branch_id)
                self._db.refresh(order)

                previous_waiter_id = order.staff_id
                if previous_waiter_id is not None:
                    self._db.add(
                        OrderAssignmentHistory(
                            order_id=order.id,
                            staff_id=previous_waiter_id,
                            branch_id=order.branch_id,
                            action=HistoryAction.REMOVED,
                            method=AssignmentMethod.MANUAL.value,
                            reason=reason,
                            actor_id=actor_id,
                        )
                    )
                    self.registry.decrement_load(previous_waiter_id)

                waiter = self.registry.increment_load(waiter.id)
                if priority is not None:
                    order.priority = priority.value

                outcome = self._record_assignment(
                    order,
                    waiter,
                    AssignmentMethod.MANUAL,
                    cursor,
                    reason=reason,
                    actor_id=actor_id,
                    previous_waiter_id=previous_waiter_id,
                )
                if previous_waiter_id is not None:
                    # The previous waiter has a free slot now
                    self._drain_locked(order.branch_id, cursor)
                safe_commit(self._db)
        except Exception:
            self._abort()
            raise

        self._flush_events()
        return outcome

    def release_on_terminal(self, order_id: int, status: str = OrderStatus.COMPLETED) -> dict[str, Any]:
        """
        Move an order to completed/cancelled and free its waiter's slot,
        then drain the branch queue. Idempotent: releasing an order that is
        already terminal changes nothing.
        """
        if status not in OrderStatus.TERMINAL:
            raise ValidationError(
                f"Invalid terminal status '{status}'",
                errors=[{"field": "status", "message": f"must be one of: {', '.join(OrderStatus.TERMINAL)}"}],
            )

        order = self._get_order(order_id)
        if order.is_terminal:
            logger.info("Release ignored, order already terminal", order_id=order_id, status=order.status)
            return {
                "order_id": order.id,
                "status": order.status,
                "released": False,
                "released_waiter_id": None,
                "assigned_from_queue": [],
            }

        try:
            with self._locks.hold(order.branch_id):
                cursor = self._lock_cursor(order.branch_id)
                self._db.refresh(order)
                if order.is_terminal:
                    self._db.rollback()
                    return {
                        "order_id": order.id,
                        "status": order.status,
                        "released": False,
                        "released_waiter_id": None,
                        "assigned_from_queue": [],
                    }

                previous_status = order.status
                order.status = status
                if status == OrderStatus.COMPLETED:
                    order.completed_at = utc_now()

                waiter_id = order.staff_id
                if waiter_id is not None:
                    self.registry.decrement_load(waiter_id, completed=status == OrderStatus.COMPLETED)
                if self.queue.discard(order.id):
                    self._emit_queue_updated(order.branch_id, order.hotel_id)

                drained = self._drain_locked(order.branch_id, cursor)
                self._db.flush()

                if self._publisher is not None:
                    self._emit(
                        self._publisher.order_status_updated,
                        order_id=order.id,
                        status=status,
                        previous_status=previous_status,
                        branch_id=order.branch_id,
                        hotel_id=order.hotel_id,
                        customer_id=order.customer_id,
                        waiter_id=waiter_id,
                    )
                safe_commit(self._db)
        except Exception:
            self._abort()
            raise

        self._flush_events()
        logger.info(
            "Order released",
            order_id=order.id,
            status=status,
            waiter_id=waiter_id,
            drained=len(drained),
        )
        return {
            "order_id": order.id,
            "status": status,
            "released": True,
            "released_waiter_id": waiter_id,
            "assigned_from_queue": [o.order_id for o in drained],
        }

    def assign_from_queue(self, branch_id: int) -> list[AssignmentOutcome]:
        """Drain the branch queue into currently eligible waiters."""
        branch = self._db.get(Branch, branch_id)
        if branch is None:
            raise NotFoundError("Branch", branch_id)

        try:
            with self._locks.hold(branch_id):
                cursor = self._lock_cursor(branch_id)
                outcomes = self._drain_locked(branch_id, cursor)
                safe_commit(self._db)
        except Exception:
            self._abort()
            raise

        self._flush_events()
        if outcomes:
            logger.info("Queue drained", branch_id=branch_id, assigned=len(outcomes))
        return outcomes

    def update_queue_priority(
        self,
        order_id: int,
        priority: QueuePriority,
        reason: str | None = None,
    ) -> QueuePlacement:
        entry = self.queue.require_entry(order_id)
        try:
            with self._locks.hold(entry.branch_id):
                placement = self.queue.update_priority(order_id, priority, reason)
                self._emit_queue_updated(entry.branch_id, entry.hotel_id)
                safe_commit(self._db)
        except Exception:
            self._abort()
            raise
        self._flush_events()
        return placement

    def remove_from_queue(self, order_id: int) -> dict[str, Any]:
        entry = self.queue.require_entry(order_id)
        branch_id, hotel_id = entry.branch_id, entry.hotel_id
        try:
            with self._locks.hold(branch_id):
                self.queue.remove(order_id)
                self._emit_queue_updated(branch_id, hotel_id)
                safe_commit(self._db)
        except Exception:
            self._abort()
            raise
        self._flush_events()
        return {"order_id": order_id, "branch_id": branch_id, "removed": True}

    def update_waiter_availability(
        self,
        waiter_id: int,
        is_available: bool,
        reason: str | None = None,
        status: str | None = None,
        max_capacity: int | None = None,
        actor_id: int | None = None,
    ) -> dict[str, Any]:
        """
        Availability change followed by a queue drain when the waiter can
        take orders again.
        """
        waiter = self.registry.set_availability(
            waiter_id,
            is_available,
            reason=reason,
            status=status,
            max_capacity=max_capacity,
            actor_id=actor_id,
        )
        drained: list[AssignmentOutcome] = []
        if waiter.is_eligible and waiter.branch_id is not None and self.queue.size(waiter.branch_id):
            drained = self.assign_from_queue(waiter.branch_id)
            self._db.refresh(waiter)

        return {
            "waiter": {
                **_waiter_brief(waiter),
                "branch_id": waiter.branch_id,
                "is_available": waiter.is_available,
                "status": waiter.status,
                "availability_reason": waiter.availability_reason,
            },
            "assigned_from_queue": [o.order_id for o in drained],
        }

    def reset_round_robin(self, hotel_id: int | None = None, branch_id: int | None = None) -> int:
        """Clear fairness cursors (one branch, a hotel, or every branch)."""
        stmt = update(RoundRobinCursor).values(
            last_waiter_id=None,
            version=RoundRobinCursor.version + 1,
            reset_at=utc_now(),
        )
        if branch_id is not None:
            stmt = stmt.where(RoundRobinCursor.branch_id == branch_id)
        elif hotel_id is not None:
            stmt = stmt.where(
                RoundRobinCursor.branch_id.in_(select(Branch.id).where(Branch.hotel_id == hotel_id))
            )
        try:
            result = self._db.execute(stmt.execution_options(synchronize_session=False))
            safe_commit(self._db)
        except Exception:
            self._abort()
            raise
        # Cached cursor objects must not keep the old pointer
        self._db.expire_all()

        count = result.rowcount or 0
        logger.info("Round-robin reset", hotel_id=hotel_id, branch_id=branch_id, cursors=count)
        return count

    # =========================================================================
    # Read side
    # =========================================================================

    def get_stats(self, hotel_id: int | None = None, branch_id: int | None = None) -> dict[str, Any]:
        utilization = self.registry.get_utilization(branch_id=branch_id, hotel_id=hotel_id)
        queue_stats = self.queue.stats(branch_id=branch_id, hotel_id=hotel_id)

        recent_stmt = select(OrderAssignmentHistory).join(Order, Order.id == OrderAssignmentHistory.order_id)
        if branch_id is not None:
            recent_stmt = recent_stmt.where(OrderAssignmentHistory.branch_id == branch_id)
        if hotel_id is not None:
            recent_stmt = recent_stmt.where(Order.hotel_id == hotel_id)
        recent = self._db.scalars(
            recent_stmt.order_by(OrderAssignmentHistory.id.desc()).limit(10)
        ).all()

        total_waiters = utilization["total_waiters"]
        return {
            "waiters": {
                "total": total_waiters,
                "available": utilization["available_waiters"],
                "busy": utilization["busy_waiters"],
                "at_capacity": utilization["at_capacity_waiters"],
                "utilization_percentage": utilization["utilization_percentage"],
            },
            "queue": queue_stats,
            "recent_assignments": [
                {
                    "order_id": h.order_id,
                    "waiter_id": h.staff_id,
                    "action": h.action,
                    "method": h.method,
                    "reason": h.reason,
                    "created_at": as_utc(h.created_at),
                }
                for h in recent
            ],
            "average_orders_per_waiter": (
                round(utilization["used_capacity"] / total_waiters, 2) if total_waiters else 0.0
            ),
            "max_capacity": utilization["total_capacity"],
            "current_load": utilization["used_capacity"],
        }

    def test_assignment(
        self,
        hotel_id: int,
        branch_id: int,
        test_type: SimulationType = SimulationType.ROUND_ROBIN,
    ) -> dict[str, Any]:
        """
        Dry run against the current snapshot. Reads only: no cursor is
        created, nothing is flushed and nothing is published.
        """
        check = validate_hierarchy(self._db, hotel_id, branch_id)
        mock_order = {
            "id": None,
            "hotel_id": hotel_id,
            "branch_id": branch_id,
            "status": OrderStatus.PENDING,
            "payment_status": PaymentStatus.PAID,
            "priority": QueuePriority.NORMAL.value,
        }
        results: dict[str, Any] = {"hierarchy": check.to_dict()}

        if test_type != SimulationType.HIERARCHY:
            method = (
                AssignmentMethod.LOAD_BALANCING
                if test_type == SimulationType.LOAD_BALANCE
                else AssignmentMethod.ROUND_ROBIN
            )
            waiters = self.registry.get_available_waiters(branch_id) if check.is_valid else []
            last_waiter_id = self._db.scalar(
                select(RoundRobinCursor.last_waiter_id).where(RoundRobinCursor.branch_id == branch_id)
            )
            chosen = select_waiter(method, [Candidate.from_staff(w) for w in waiters], last_waiter_id)
            selected = next((w for w in waiters if chosen and w.id == chosen.waiter_id), None)

            results.update(
                method=method.value,
                candidates=[_waiter_brief(w) for w in waiters],
                last_waiter_id=last_waiter_id,
                selected_waiter=_waiter_brief(selected) if selected is not None else None,
            )
            if not check.is_valid:
                results["outcome"] = "rejected"
            elif selected is not None:
                results["outcome"] = "assigned"
            else:
                results["outcome"] = "queued"
                results["queue_position"] = self.queue.size(branch_id) + 1

        return {
            "test_type": test_type.value,
            "mock_order": mock_order,
            "test_results": results,
            "timestamp": utc_now(),
        }

    # =========================================================================
    # Monitoring support
    # =========================================================================

    def find_orphans(self, branch_id: int, older_than_seconds: int | None = None) -> list[int]:
        """
        Paid, active, unassigned and unqueued orders older than the orphan
        timeout, oldest first.
        """
        seconds = older_than_seconds if older_than_seconds is not None else settings.assignment_orphan_timeout_seconds
        cutoff = utc_now() - timedelta(seconds=seconds)
        stmt = (
            select(Order.id)
            .where(
                Order.branch_id == branch_id,
                Order.is_active.is_(True),
                Order.payment_status == PaymentStatus.PAID,
                Order.status.in_(OrderStatus.ACTIVE),
                Order.staff_id.is_(None),
                ~Order.id.in_(select(OrderQueueEntry.order_id)),
                or_(
                    Order.paid_at <= cutoff,
                    Order.paid_at.is_(None) & (Order.created_at <= cutoff),
                ),
            )
            .order_by(Order.id)
        )
        return list(self._db.scalars(stmt).all())

    def detect_timeouts(self, branch_id: int) -> list[int]:
        """Assigned orders still in preparation past the preparation limit."""
        cutoff = utc_now() - timedelta(minutes=settings.assignment_max_preparation_minutes)
        order_ids = list(
            self._db.scalars(
                select(Order.id).where(
                    Order.branch_id == branch_id,
                    Order.staff_id.is_not(None),
                    Order.status.in_(OrderStatus.IN_PREPARATION),
                    Order.assigned_at <= cutoff,
                )
            ).all()
        )
        if order_ids:
            logger.warning(
                "Orders exceeded preparation time",
                branch_id=branch_id,
                count=len(order_ids),
                order_ids=order_ids[:20],
            )
        return order_ids

    def reconcile(self) -> dict[str, int]:
        """
        Startup repair: recompute every waiter's load from the active orders
        it owns (clamped to capacity) and drop stale queue entries.
        """
        owned = dict(
            self._db.execute(
                select(Order.staff_id, func.count(Order.id))
                .where(Order.staff_id.is_not(None), Order.status.in_(OrderStatus.ACTIVE))
                .group_by(Order.staff_id)
            ).all()
        )

        corrected = 0
        waiters = self._db.scalars(select(Staff).where(Staff.role == Roles.WAITER)).all()
        try:
            for waiter in waiters:
                expected = owned.get(waiter.id, 0)
                if expected > waiter.max_capacity:
                    logger.warning(
                        "Waiter owns more active orders than its capacity",
                        waiter_id=waiter.id,
                        owned=expected,
                        max_capacity=waiter.max_capacity,
                    )
                    expected = waiter.max_capacity
                if waiter.active_orders_count != expected:
                    self.registry.set_load(waiter.id, expected)
                    corrected += 1

            purged = self.queue.purge_stale()
            safe_commit(self._db)
        except Exception:
            self._abort()
            raise
        self._db.expire_all()

        logger.info("Assignment state reconciled", waiters_corrected=corrected, queue_entries_removed=purged)
        return {"waiters_corrected": corrected, "stale_queue_entries_removed": purged}
