"""
Assignment Queue.

Per-branch waiting list for paid orders that found no eligible waiter.
Entries are rows of order_queue_entry, so the queue survives restarts and is
shared by every worker process.

Ordering: higher priority first, then earlier queued_at, then lower id.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.orm import Session

from rest_api.models import Order, OrderQueueEntry, Staff
from shared.config.constants import OrderStatus, QueuePriority, Roles, WaiterStatus
from shared.config.logging import assignment_logger as logger
from shared.config.settings import settings
from shared.utils.dates import as_utc, minutes_between, utc_now
from shared.utils.exceptions import AlreadyAssignedError, QueueEntryNotFoundError, QueueFullError


@dataclass
class QueuePlacement:
    """Where an order sits in its branch queue."""

    order_id: int
    branch_id: int
    hotel_id: int
    priority: str
    position: int
    estimated_wait_minutes: int
    queue_length: int
    queued_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "branch_id": self.branch_id,
            "hotel_id": self.hotel_id,
            "priority": self.priority,
            "position": self.position,
            "estimated_wait_minutes": self.estimated_wait_minutes,
            "queue_length": self.queue_length,
            "queued_at": as_utc(self.queued_at),
        }


_ORDERING = (
    OrderQueueEntry.priority_value.desc(),
    OrderQueueEntry.queued_at.asc(),
    OrderQueueEntry.id.asc(),
)


class AssignmentQueue:
    """Queue operations. Mutations flush; the engine owns the transaction."""

    def __init__(self, db: Session):
        self._db = db

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_entry(self, order_id: int) -> OrderQueueEntry | None:
        return self._db.scalar(select(OrderQueueEntry).where(OrderQueueEntry.order_id == order_id))

    def require_entry(self, order_id: int) -> OrderQueueEntry:
        entry = self.get_entry(order_id)
        if entry is None:
            raise QueueEntryNotFoundError(order_id)
        return entry

    def size(self, branch_id: int) -> int:
        return self._db.scalar(
            select(func.count(OrderQueueEntry.id)).where(OrderQueueEntry.branch_id == branch_id)
        ) or 0

    def branches_with_entries(self) -> list[int]:
        return list(self._db.scalars(select(OrderQueueEntry.branch_id).distinct()).all())

    def position_of(self, entry: OrderQueueEntry) -> int:
        """1-based position of the entry inside its branch queue."""
        ahead = self._db.scalar(
            select(func.count(OrderQueueEntry.id)).where(
                OrderQueueEntry.branch_id == entry.branch_id,
                OrderQueueEntry.id != entry.id,
                or_(
                    OrderQueueEntry.priority_value > entry.priority_value,
                    and_(
                        OrderQueueEntry.priority_value == entry.priority_value,
                        or_(
                            OrderQueueEntry.queued_at < entry.queued_at,
                            and_(
                                OrderQueueEntry.queued_at == entry.queued_at,
                                OrderQueueEntry.id < entry.id,
                            ),
                        ),
                    ),
                ),
            )
        ) or 0
        return ahead + 1

    def estimated_wait_minutes(self, branch_id: int, position: int) -> int:
        """
        ceil(position * avg_handling / waiters_on_shift), never below one
        average handling time. Waiters on shift are available and active,
        full or not, since they are the ones that will free slots.
        """
        avg = settings.assignment_avg_handling_minutes
        on_shift = self._db.scalar(
            select(func.count(Staff.id)).where(
                Staff.branch_id == branch_id,
                Staff.role == Roles.WAITER,
                Staff.is_active.is_(True),
                Staff.is_available.is_(True),
                Staff.status == WaiterStatus.ACTIVE,
            )
        ) or 0
        return max(avg, math.ceil(position * avg / max(1, on_shift)))

    def placement(self, entry: OrderQueueEntry) -> QueuePlacement:
        position = self.position_of(entry)
        return QueuePlacement(
            order_id=entry.order_id,
            branch_id=entry.branch_id,
            hotel_id=entry.hotel_id,
            priority=entry.priority,
            position=position,
            estimated_wait_minutes=self.estimated_wait_minutes(entry.branch_id, position),
            queue_length=self.size(entry.branch_id),
            queued_at=entry.queued_at,
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    def enqueue(
        self,
        order: Order,
        priority: QueuePriority = QueuePriority.NORMAL,
        reason: str | None = None,
    ) -> QueuePlacement:
        """
        Add an order to its branch queue.

        Idempotent: an order that is already queued keeps its place.

        Raises:
            AlreadyAssignedError: order already has a waiter.
            QueueFullError: branch queue is at its configured ceiling.
        """
        if order.staff_id is not None:
            raise AlreadyAssignedError(order.id, order.staff_id)

        existing = self.get_entry(order.id)
        if existing is not None:
            return self.placement(existing)

        max_size = settings.assignment_max_queue_size
        if self.size(order.branch_id) >= max_size:
            raise QueueFullError(
                order.branch_id,
                max_size,
                retry_after=settings.assignment_queue_retry_after,
                order_id=order.id,
            )

        entry = OrderQueueEntry(
            order_id=order.id,
            branch_id=order.branch_id,
            hotel_id=order.hotel_id,
            reason=reason,
        )
        entry.set_priority(priority)
        self._db.add(entry)
        self._db.flush()

        placement = self.placement(entry)
        logger.info(
            "Order queued",
            order_id=order.id,
            branch_id=order.branch_id,
            priority=priority.value,
            position=placement.position,
        )
        return placement

    def dequeue_next(self, branch_id: int) -> OrderQueueEntry | None:
        """Remove and return the head of the branch queue."""
        entry = self._db.scalar(
            select(OrderQueueEntry)
            .where(OrderQueueEntry.branch_id == branch_id)
            .order_by(*_ORDERING)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        if entry is None:
            return None
        self._db.delete(entry)
        self._db.flush()
        return entry

    def requeue(self, entry: OrderQueueEntry) -> None:
        """Put a dequeued entry back with its original priority and timestamp."""
        self._db.add(
            OrderQueueEntry(
                order_id=entry.order_id,
                branch_id=entry.branch_id,
                hotel_id=entry.hotel_id,
                priority=entry.priority,
                priority_value=entry.priority_value,
                reason=entry.reason,
                queued_at=entry.queued_at,
            )
        )
        self._db.flush()

    def update_priority(
        self,
        order_id: int,
        priority: QueuePriority,
        reason: str | None = None,
    ) -> QueuePlacement:
        """Move a queued order to another priority band. The order row follows."""
        entry = self.require_entry(order_id)
        entry.set_priority(priority)
        if reason:
            entry.reason = reason
        order = self._db.get(Order, order_id)
        if order is not None:
            order.priority = priority.value
        self._db.flush()

        logger.info("Queue priority updated", order_id=order_id, priority=priority.value)
        return self.placement(entry)

    def remove(self, order_id: int) -> OrderQueueEntry:
        """Remove a queued order. Raises QueueEntryNotFoundError if absent."""
        entry = self.require_entry(order_id)
        self._db.delete(entry)
        self._db.flush()
        logger.info("Order removed from queue", order_id=order_id, branch_id=entry.branch_id)
        return entry

    def discard(self, order_id: int) -> bool:
        """Remove a queued order if present. Returns whether anything was removed."""
        entry = self.get_entry(order_id)
        if entry is None:
            return False
        self._db.delete(entry)
        self._db.flush()
        return True

    def purge_stale(self) -> int:
        """Drop entries whose order is gone, assigned or terminal."""
        stale = select(Order.id).where(
            or_(Order.staff_id.is_not(None), Order.status.in_(OrderStatus.TERMINAL))
        )
        result = self._db.execute(
            delete(OrderQueueEntry)
            .where(
                or_(
                    OrderQueueEntry.order_id.in_(stale),
                    ~OrderQueueEntry.order_id.in_(select(Order.id)),
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # =========================================================================
    # Views
    # =========================================================================

    def list_entries(self, branch_id: int | None = None, hotel_id: int | None = None) -> list[dict[str, Any]]:
        """Queued orders in dequeue order, with their position inside each branch."""
        stmt = select(OrderQueueEntry)
        if branch_id is not None:
            stmt = stmt.where(OrderQueueEntry.branch_id == branch_id)
        if hotel_id is not None:
            stmt = stmt.where(OrderQueueEntry.hotel_id == hotel_id)
        entries = self._db.scalars(stmt.order_by(OrderQueueEntry.branch_id, *_ORDERING)).all()

        now = utc_now()
        positions: dict[int, int] = {}
        items = []
        for entry in entries:
            positions[entry.branch_id] = positions.get(entry.branch_id, 0) + 1
            position = positions[entry.branch_id]
            items.append({
                "order_id": entry.order_id,
                "branch_id": entry.branch_id,
                "hotel_id": entry.hotel_id,
                "priority": entry.priority,
                "position": position,
                "reason": entry.reason,
                "queued_at": as_utc(entry.queued_at),
                "waiting_minutes": round(minutes_between(entry.queued_at, now) or 0.0, 1),
                "estimated_wait_minutes": self.estimated_wait_minutes(entry.branch_id, position),
            })
        return items

    def stats(self, branch_id: int | None = None, hotel_id: int | None = None) -> dict[str, Any]:
        """
        Queue summary. is_full only makes sense for a single branch and is
        False for wider scopes.
        """
        stmt = select(OrderQueueEntry.priority, OrderQueueEntry.queued_at)
        if branch_id is not None:
            stmt = stmt.where(OrderQueueEntry.branch_id == branch_id)
        if hotel_id is not None:
            stmt = stmt.where(OrderQueueEntry.hotel_id == hotel_id)
        rows = self._db.execute(stmt).all()

        now = utc_now()
        breakdown = {p.value: 0 for p in QueuePriority}
        waits = []
        oldest: datetime | None = None
        for priority, queued_at in rows:
            breakdown[priority] = breakdown.get(priority, 0) + 1
            queued_at = as_utc(queued_at)
            waits.append(minutes_between(queued_at, now) or 0.0)
            if oldest is None or queued_at < oldest:
                oldest = queued_at

        total = len(rows)
        max_size = settings.assignment_max_queue_size
        return {
            "total_queued": total,
            "priority_breakdown": breakdown,
            "oldest_queued_at": oldest,
            "average_wait_minutes": round(sum(waits) / total, 1) if total else 0.0,
            "is_empty": total == 0,
            "is_full": branch_id is not None and total >= max_size,
            "max_size": max_size,
        }
