"""
Centralized constants for the assignment service.
Avoid magic strings and repeated constants.

Usage:
    from shared.config.constants import Roles, OrderStatus, AssignmentMethod

    if order.status in OrderStatus.TERMINAL:
        ...
"""

from enum import Enum
from typing import Final


# =============================================================================
# Staff Roles
# =============================================================================


class Roles:
    """Staff role constants."""

    SUPER_ADMIN: Final[str] = "SUPER_ADMIN"
    ADMIN: Final[str] = "ADMIN"
    MANAGER: Final[str] = "MANAGER"
    WAITER: Final[str] = "WAITER"

    ALL: Final[list[str]] = [SUPER_ADMIN, ADMIN, MANAGER, WAITER]


# Role groups for common access patterns
MANAGEMENT_ROLES: Final[frozenset[str]] = frozenset({Roles.SUPER_ADMIN, Roles.ADMIN, Roles.MANAGER})
ALL_STAFF_ROLES: Final[frozenset[str]] = frozenset(Roles.ALL)


# =============================================================================
# Entity Status Constants
# =============================================================================


class WaiterStatus:
    """Staff working status. Only ACTIVE waiters receive automatic assignments."""

    ACTIVE: Final[str] = "active"
    INACTIVE: Final[str] = "inactive"
    ON_BREAK: Final[str] = "on_break"
    ON_LEAVE: Final[str] = "on_leave"
    SUSPENDED: Final[str] = "suspended"

    ALL: Final[list[str]] = [ACTIVE, INACTIVE, ON_BREAK, ON_LEAVE, SUSPENDED]
    # Values a waiter or manager may set through the availability endpoint
    SELF_SERVICE: Final[list[str]] = [ACTIVE, INACTIVE, ON_BREAK, ON_LEAVE]


class OrderStatus:
    """Order lifecycle status constants."""

    PENDING: Final[str] = "pending"
    CONFIRMED: Final[str] = "confirmed"
    PREPARING: Final[str] = "preparing"
    READY: Final[str] = "ready"
    SERVED: Final[str] = "served"
    COMPLETED: Final[str] = "completed"
    CANCELLED: Final[str] = "cancelled"

    # Status groups
    ACTIVE: Final[list[str]] = [PENDING, CONFIRMED, PREPARING, READY, SERVED]
    TERMINAL: Final[list[str]] = [COMPLETED, CANCELLED]
    # Orders still being worked on before they reach the table
    IN_PREPARATION: Final[list[str]] = [PENDING, CONFIRMED, PREPARING]


class PaymentStatus:
    """Payment status constants."""

    PENDING: Final[str] = "pending"
    PAID: Final[str] = "paid"
    FAILED: Final[str] = "failed"
    REFUNDED: Final[str] = "refunded"


class HistoryAction:
    """Assignment history actions."""

    ASSIGNED: Final[str] = "assigned"
    REMOVED: Final[str] = "removed"


class AssignmentMethod(str, Enum):
    """How an order got its waiter."""

    ROUND_ROBIN = "round-robin"
    LOAD_BALANCING = "load-balancing"
    MANUAL = "manual"


class QueuePriority(str, Enum):
    """Queue priority bands, highest first when dequeuing."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def weight(self) -> int:
        return PRIORITY_WEIGHTS[self.value]


PRIORITY_WEIGHTS: Final[dict[str, int]] = {
    QueuePriority.LOW.value: 1,
    QueuePriority.NORMAL.value: 2,
    QueuePriority.HIGH.value: 3,
    QueuePriority.URGENT.value: 4,
}


class SimulationType(str, Enum):
    """Scenarios accepted by the assignment simulation endpoint."""

    HIERARCHY = "hierarchy"
    LOAD_BALANCE = "load-balance"
    ROUND_ROBIN = "round-robin"


# =============================================================================
# Event Types (real-time notifications)
# =============================================================================


class EventType:
    """Socket event names emitted by the assignment service."""

    ORDER_ASSIGNED: Final[str] = "order:assigned"
    ORDER_STATUS_UPDATED: Final[str] = "order:status_updated"
    WAITER_AVAILABILITY_CHANGED: Final[str] = "waiter:availability_changed"
    QUEUE_UPDATED: Final[str] = "queue:updated"

    ALL: Final[list[str]] = [
        ORDER_ASSIGNED,
        ORDER_STATUS_UPDATED,
        WAITER_AVAILABILITY_CHANGED,
        QUEUE_UPDATED,
    ]


# =============================================================================
# Hierarchy validation messages
# =============================================================================


class HierarchyErrors:
    """Reasons returned when the hotel -> branch -> staff chain is broken."""

    HOTEL_NOT_FOUND: Final[str] = "Hotel not found"
    HOTEL_NO_ADMIN: Final[str] = "Hotel has no assigned admin"
    BRANCH_NOT_FOUND: Final[str] = "Branch not found"
    BRANCH_NO_ADMIN: Final[str] = "Branch has no assigned admin"
    BRANCH_WRONG_HOTEL: Final[str] = "Branch does not belong to the specified hotel"
    ADMIN_MISMATCH: Final[str] = "Hotel and branch are managed by different admins"


def validate_order_status(status: str) -> bool:
    """Check if an order status is valid."""
    return status in OrderStatus.ACTIVE or status in OrderStatus.TERMINAL


def validate_waiter_status(status: str) -> bool:
    """Check if a waiter status is valid."""
    return status in WaiterStatus.ALL
