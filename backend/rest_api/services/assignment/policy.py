"""
Waiter selection policies.

Pure functions over an already filtered candidate list: no database access,
no clock, no randomness. Both return None for an empty list, which the
engine treats as "no eligible waiter".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Sequence

from shared.config.constants import AssignmentMethod
from shared.utils.dates import as_utc

if TYPE_CHECKING:
    from rest_api.models import Staff

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Candidate:
    """Snapshot of the fields selection depends on."""

    waiter_id: int
    active_orders_count: int
    max_capacity: int
    last_assigned_at: datetime | None = None

    @classmethod
    def from_staff(cls, waiter: "Staff") -> "Candidate":
        return cls(
            waiter_id=waiter.id,
            active_orders_count=waiter.active_orders_count,
            max_capacity=waiter.max_capacity,
            last_assigned_at=as_utc(waiter.last_assigned_at),
        )


def round_robin_select(
    candidates: Sequence[Candidate],
    last_waiter_id: int | None,
) -> Candidate | None:
    """
    Least-loaded first; among waiters tied on the minimum load, the first one
    (by id) after `last_waiter_id`, wrapping around to the lowest id.
    """
    if not candidates:
        return None

    min_load = min(c.active_orders_count for c in candidates)
    tied = sorted(
        (c for c in candidates if c.active_orders_count == min_load),
        key=lambda c: c.waiter_id,
    )
    if len(tied) == 1 or last_waiter_id is None:
        return tied[0]

    for candidate in tied:
        if candidate.waiter_id > last_waiter_id:
            return candidate
    return tied[0]


def load_balance_select(candidates: Sequence[Candidate]) -> Candidate | None:
    """
    Strictly lowest load wins; ties go to the least recently assigned waiter
    (never-assigned first), then to the lowest id.
    """
    if not candidates:
        return None

    return min(
        candidates,
        key=lambda c: (
            c.active_orders_count,
            c.last_assigned_at or _NEVER,
            c.waiter_id,
        ),
    )


def select_waiter(
    method: AssignmentMethod,
    candidates: Sequence[Candidate],
    last_waiter_id: int | None = None,
) -> Candidate | None:
    """Dispatch on the assignment method."""
    if method == AssignmentMethod.LOAD_BALANCING:
        return load_balance_select(candidates)
    if method == AssignmentMethod.ROUND_ROBIN:
        return round_robin_select(candidates, last_waiter_id)
    raise ValueError(f"{method!r} is not an automatic assignment method")
