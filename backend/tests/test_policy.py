"""
Tests for the waiter selection policies.
"""

from datetime import datetime, timedelta, timezone

import pytest

from rest_api.services.assignment.policy import (
    Candidate,
    load_balance_select,
    round_robin_select,
    select_waiter,
)
from shared.config.constants import AssignmentMethod


T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def c(waiter_id, load=0, capacity=5, last=None):
    return Candidate(waiter_id=waiter_id, active_orders_count=load, max_capacity=capacity, last_assigned_at=last)


class TestRoundRobin:

    def test_empty_returns_none(self):
        assert round_robin_select([], None) is None

    def test_least_loaded_wins_regardless_of_cursor(self):
        chosen = round_robin_select([c(1, 2), c(2, 1), c(3, 2)], last_waiter_id=1)
        assert chosen.waiter_id == 2

    def test_no_cursor_picks_lowest_id_among_tied(self):
        chosen = round_robin_select([c(7, 1), c(3, 1), c(5, 1)], last_waiter_id=None)
        assert chosen.waiter_id == 3

    def test_picks_first_tied_id_after_cursor(self):
        chosen = round_robin_select([c(1, 2), c(2, 2), c(3, 2)], last_waiter_id=1)
        assert chosen.waiter_id == 2

    def test_wraps_around_after_highest_id(self):
        chosen = round_robin_select([c(1, 2), c(2, 2), c(3, 2)], last_waiter_id=3)
        assert chosen.waiter_id == 1

    def test_cursor_on_waiter_no_longer_present(self):
        """The cursor may point at a waiter that went unavailable."""
        chosen = round_robin_select([c(1), c(4)], last_waiter_id=2)
        assert chosen.waiter_id == 4

    def test_rotation_over_equal_loads(self):
        candidates = [c(10, 2), c(20, 2), c(30, 2)]
        last = None
        picked = []
        for _ in range(6):
            chosen = round_robin_select(candidates, last)
            picked.append(chosen.waiter_id)
            last = chosen.waiter_id
        assert picked == [10, 20, 30, 10, 20, 30]


class TestLoadBalance:

    def test_empty_returns_none(self):
        assert load_balance_select([]) is None

    def test_strictly_lowest_load(self):
        chosen = load_balance_select([c(1, 3), c(2, 0), c(3, 1)])
        assert chosen.waiter_id == 2

    def test_never_assigned_wins_tie(self):
        chosen = load_balance_select([c(1, 1, last=T0), c(2, 1, last=None)])
        assert chosen.waiter_id == 2

    def test_least_recently_assigned_wins_tie(self):
        chosen = load_balance_select([
            c(1, 1, last=T0),
            c(2, 1, last=T0 - timedelta(minutes=10)),
            c(3, 1, last=T0 + timedelta(minutes=1)),
        ])
        assert chosen.waiter_id == 2

    def test_lowest_id_on_full_tie(self):
        chosen = load_balance_select([c(9, 1, last=T0), c(4, 1, last=T0)])
        assert chosen.waiter_id == 4


class TestSelectWaiter:

    def test_dispatches_round_robin(self):
        chosen = select_waiter(AssignmentMethod.ROUND_ROBIN, [c(1), c(2)], last_waiter_id=1)
        assert chosen.waiter_id == 2

    def test_dispatches_load_balancing(self):
        chosen = select_waiter(AssignmentMethod.LOAD_BALANCING, [c(1, 2), c(2, 1)])
        assert chosen.waiter_id == 2

    def test_manual_is_not_a_policy(self):
        with pytest.raises(ValueError):
            select_waiter(AssignmentMethod.MANUAL, [c(1)])
