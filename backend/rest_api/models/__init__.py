"""
SQLAlchemy ORM Models Package.

- base: Base class and AuditMixin
- hotel: Hotel, Branch
- staff: Staff (waiters, managers, admins)
- order: Order (assignment projection)
- assignment: OrderAssignmentHistory, OrderQueueEntry, RoundRobinCursor
"""

from .base import Base, AuditMixin, BigIntPK
from .hotel import Hotel, Branch
from .staff import Staff
from .order import Order
from .assignment import OrderAssignmentHistory, OrderQueueEntry, RoundRobinCursor

__all__ = [
    "Base",
    "AuditMixin",
    "BigIntPK",
    "Hotel",
    "Branch",
    "Staff",
    "Order",
    "OrderAssignmentHistory",
    "OrderQueueEntry",
    "RoundRobinCursor",
]
