"""
Organizational hierarchy: Hotel and Branch.

A hotel and each of its branches must be managed by the same admin for the
assignment engine to operate on the branch.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import AuditMixin, Base, BigIntPK

if TYPE_CHECKING:
    from .staff import Staff


class Hotel(AuditMixin, Base):
    """
    Top-level tenant (a hotel with one or more restaurant branches).
    Inherits: is_active, created_at, updated_at, deleted_at, *_by_id from AuditMixin.
    """

    __tablename__ = "hotel"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    # Plain column: staff references hotel, a FK back would be circular
    admin_id: Mapped[Optional[int]] = mapped_column(BigInteger, index=True)

    branches: Mapped[list["Branch"]] = relationship(back_populates="hotel")

    def __repr__(self) -> str:
        return f"<Hotel(id={self.id}, name='{self.name}')>"


class Branch(AuditMixin, Base):
    """
    A restaurant location inside a hotel. Waiters, orders and the
    assignment queue are all scoped to a branch.
    """

    __tablename__ = "branch"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    hotel_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("hotel.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    admin_id: Mapped[Optional[int]] = mapped_column(BigInteger, index=True)

    hotel: Mapped["Hotel"] = relationship(back_populates="branches")
    staff: Mapped[list["Staff"]] = relationship(back_populates="branch")

    def __repr__(self) -> str:
        return f"<Branch(id={self.id}, hotel_id={self.hotel_id}, name='{self.name}')>"
