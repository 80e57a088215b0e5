"""
Staff model. Waiters are staff with role WAITER and carry the load
counters the assignment engine works with.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import Roles, WaiterStatus
from shared.config.settings import settings
from .base import AuditMixin, Base, BigIntPK

if TYPE_CHECKING:
    from .hotel import Branch


class Staff(AuditMixin, Base):
    """
    A staff member of a hotel, optionally bound to one branch.

    Load invariant: 0 <= active_orders_count <= max_capacity, enforced by the
    check constraint below and by the conditional updates in WaiterRegistry.
    """

    __tablename__ = "staff"
    __table_args__ = (
        CheckConstraint("active_orders_count >= 0", name="ck_staff_load_non_negative"),
        CheckConstraint("active_orders_count <= max_capacity", name="ck_staff_load_within_capacity"),
        CheckConstraint("max_capacity >= 1", name="ck_staff_capacity_positive"),
        Index("ix_staff_branch_role", "branch_id", "role"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    hotel_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("hotel.id"), nullable=False, index=True
    )
    branch_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("branch.id"), index=True
    )
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    last_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    role: Mapped[str] = mapped_column(Text, nullable=False, default=Roles.WAITER)
    manager_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("staff.id"), index=True
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, default=WaiterStatus.ACTIVE)

    # Assignment state
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    availability_reason: Mapped[Optional[str]] = mapped_column(Text)
    active_orders_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_capacity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=lambda: settings.assignment_default_max_capacity
    )
    last_assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    total_assignments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    branch: Mapped[Optional["Branch"]] = relationship(back_populates="staff")
    manager: Mapped[Optional["Staff"]] = relationship(remote_side="Staff.id")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email

    @property
    def has_capacity(self) -> bool:
        return self.active_orders_count < self.max_capacity

    @property
    def is_eligible(self) -> bool:
        """Can receive an automatic assignment right now."""
        return (
            self.role == Roles.WAITER
            and self.is_active
            and self.is_available
            and self.status == WaiterStatus.ACTIVE
            and self.has_capacity
        )

    def __repr__(self) -> str:
        return (
            f"<Staff(id={self.id}, role={self.role}, branch_id={self.branch_id}, "
            f"load={self.active_orders_count}/{self.max_capacity})>"
        )
