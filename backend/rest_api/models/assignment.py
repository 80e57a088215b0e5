"""
Assignment bookkeeping: history trail, waiting queue, round-robin cursor.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import QueuePriority, PRIORITY_WEIGHTS
from shared.utils.dates import utc_now
from .base import Base, BigIntPK

if TYPE_CHECKING:
    from .order import Order


class OrderAssignmentHistory(Base):
    """
    Append-only trail of who held an order.

    action is "assigned" or "removed". Rows are never updated or deleted.
    """

    __tablename__ = "order_assignment_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("customer_order.id"), nullable=False, index=True
    )
    staff_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("staff.id"), nullable=False, index=True
    )
    branch_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    method: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    actor_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, index=True
    )

    order: Mapped["Order"] = relationship(back_populates="assignment_history")

    def __repr__(self) -> str:
        return f"<OrderAssignmentHistory(order_id={self.order_id}, staff_id={self.staff_id}, action={self.action})>"


class OrderQueueEntry(Base):
    """
    An order waiting for a waiter.

    Dequeue order: priority_value DESC, queued_at ASC, id ASC.
    """

    __tablename__ = "order_queue_entry"
    __table_args__ = (
        Index("ix_queue_branch_order", "branch_id", "priority_value", "queued_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("customer_order.id"), nullable=False, unique=True
    )
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False, index=True
    )
    hotel_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    priority: Mapped[str] = mapped_column(Text, nullable=False, default=QueuePriority.NORMAL.value)
    priority_value: Mapped[int] = mapped_column(
        Integer, nullable=False, default=PRIORITY_WEIGHTS[QueuePriority.NORMAL.value]
    )
    reason: Mapped[Optional[str]] = mapped_column(Text)
    # Python-side default keeps microsecond precision for FIFO ordering
    queued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    order: Mapped["Order"] = relationship()

    def set_priority(self, priority: QueuePriority) -> None:
        self.priority = priority.value
        self.priority_value = priority.weight

    def __repr__(self) -> str:
        return f"<OrderQueueEntry(order_id={self.order_id}, branch_id={self.branch_id}, priority={self.priority})>"


class RoundRobinCursor(Base):
    """
    Per-branch round-robin pointer: the waiter that received the last
    tie-broken assignment. The row is also the branch lock row
    (SELECT ... FOR UPDATE) that serializes assignment across processes.
    """

    __tablename__ = "round_robin_cursor"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False, unique=True
    )
    last_waiter_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=utc_now)

    def __repr__(self) -> str:
        return f"<RoundRobinCursor(branch_id={self.branch_id}, last_waiter_id={self.last_waiter_id})>"
