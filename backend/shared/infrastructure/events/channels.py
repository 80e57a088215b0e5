"""
Room naming for real-time notifications.

Rooms are the logical audiences the socket layer fans out to.
"""

from __future__ import annotations


def _validate_positive_id(id_value: int, name: str) -> None:
    if not isinstance(id_value, int) or isinstance(id_value, bool) or id_value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {id_value!r}")


def room_staff(staff_id: int) -> str:
    """Room of a single waiter (their own devices)."""
    _validate_positive_id(staff_id, "staff_id")
    return f"staff_{staff_id}"


def room_branch(branch_id: int) -> str:
    """Room of everybody watching a branch dashboard."""
    _validate_positive_id(branch_id, "branch_id")
    return f"branch_{branch_id}"


def room_hotel(hotel_id: int) -> str:
    """Room of hotel-level admins."""
    _validate_positive_id(hotel_id, "hotel_id")
    return f"hotel_{hotel_id}"


def room_user(user_id: int) -> str:
    """Room of a customer (order tracking)."""
    _validate_positive_id(user_id, "user_id")
    return f"user_{user_id}"
