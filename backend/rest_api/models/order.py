"""
Order projection used by the assignment engine.

Only the fields assignment reads (branch, payment state, status) and writes
(staff, method, timestamps) live here; menu items, totals breakdown and
payments belong to the ordering service.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import OrderStatus, PaymentStatus, QueuePriority
from .base import AuditMixin, Base, BigIntPK

if TYPE_CHECKING:
    from .staff import Staff
    from .assignment import OrderAssignmentHistory


class Order(AuditMixin, Base):
    """
    A customer order. At most one current assignee (staff_id); the full
    trail of assignees lives in OrderAssignmentHistory.
    """

    __tablename__ = "customer_order"
    __table_args__ = (
        Index("ix_order_branch_status", "branch_id", "status"),
        Index("ix_order_staff_status", "staff_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    hotel_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("hotel.id"), nullable=False, index=True
    )
    branch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("branch.id"), nullable=False, index=True
    )
    customer_id: Mapped[Optional[int]] = mapped_column(BigInteger, index=True)

    status: Mapped[str] = mapped_column(Text, nullable=False, default=OrderStatus.PENDING)
    payment_status: Mapped[str] = mapped_column(Text, nullable=False, default=PaymentStatus.PENDING)
    priority: Mapped[str] = mapped_column(Text, nullable=False, default=QueuePriority.NORMAL.value)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    customer_rating: Mapped[Optional[int]] = mapped_column(Integer)  # 1..5

    # Assignment fields (owned by the assignment engine)
    staff_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("staff.id"), index=True
    )
    assignment_method: Mapped[Optional[str]] = mapped_column(Text)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    staff: Mapped[Optional["Staff"]] = relationship()
    assignment_history: Mapped[list["OrderAssignmentHistory"]] = relationship(
        back_populates="order",
        order_by="OrderAssignmentHistory.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in OrderStatus.TERMINAL

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, branch_id={self.branch_id}, status={self.status}, staff_id={self.staff_id})>"
