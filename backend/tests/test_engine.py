"""
Tests for AssignmentEngine: automatic and manual assignment, queueing,
release, reassignment and housekeeping.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from rest_api.models import OrderAssignmentHistory, OrderQueueEntry, RoundRobinCursor, Staff
from rest_api.services.assignment import AssignmentEngine
from shared.config.constants import (
    AssignmentMethod,
    EventType,
    HistoryAction,
    OrderStatus,
    QueuePriority,
    SimulationType,
    WaiterStatus,
)
from shared.utils.dates import utc_now
from shared.utils.exceptions import (
    AlreadyAssignedError,
    CapacityExceededError,
    InvalidHierarchyError,
    InvalidStateError,
    NoWaitersAvailableError,
    NotFoundError,
)


@pytest.fixture
def engine(db_session, publisher, locks):
    return AssignmentEngine(db_session, publisher, locks)


def history_of(db_session, order_id):
    return db_session.scalars(
        select(OrderAssignmentHistory)
        .where(OrderAssignmentHistory.order_id == order_id)
        .order_by(OrderAssignmentHistory.id)
    ).all()


def loads(db_session, waiters):
    for waiter in waiters:
        db_session.refresh(waiter)
    return [w.active_orders_count for w in waiters]


class TestAutomaticAssign:

    def test_assigns_least_loaded_and_records_history(self, db_session, engine, seed_hierarchy, make_order, set_load, transport):
        w1, w2, w3 = seed_hierarchy["waiters"]
        set_load(w1, 1)
        set_load(w3, 1)
        order = make_order(customer_id=77)

        outcome = engine.automatic_assign(order.id)

        assert outcome.is_assigned
        assert outcome.waiter_id == w2.id
        assert order.staff_id == w2.id
        assert order.assignment_method == AssignmentMethod.ROUND_ROBIN.value
        assert order.assigned_at is not None
        assert loads(db_session, [w1, w2, w3]) == [1, 1, 1]

        history = history_of(db_session, order.id)
        assert [(h.action, h.staff_id) for h in history] == [(HistoryAction.ASSIGNED, w2.id)]

        rooms = {e.room for e in transport.events(EventType.ORDER_ASSIGNED)}
        assert rooms == {f"staff_{w2.id}", "user_77", "branch_10", "hotel_1"}

    def test_round_robin_rotates_over_equal_loads(self, db_session, engine, seed_hierarchy, make_order, set_load):
        waiters = seed_hierarchy["waiters"]
        for waiter in waiters:
            set_load(waiter, 2, max_capacity=5)

        picked = [engine.automatic_assign(make_order().id).waiter_id for _ in range(4)]

        assert picked == [301, 302, 303, 301]
        cursor = db_session.scalar(select(RoundRobinCursor).where(RoundRobinCursor.branch_id == 10))
        assert cursor.last_waiter_id == 301

    def test_load_balancing_prefers_least_recent(self, db_session, engine, seed_hierarchy, make_order):
        w1, w2, w3 = seed_hierarchy["waiters"]
        w1.last_assigned_at = utc_now() - timedelta(minutes=5)
        w2.last_assigned_at = utc_now() - timedelta(minutes=30)
        w3.last_assigned_at = utc_now() - timedelta(minutes=1)
        db_session.commit()

        outcome = engine.automatic_assign(make_order().id, method=AssignmentMethod.LOAD_BALANCING)

        assert outcome.waiter_id == w2.id
        assert outcome.method == AssignmentMethod.LOAD_BALANCING.value

    def test_all_full_queues_order(self, db_session, engine, seed_hierarchy, make_order, set_load, transport):
        waiters = seed_hierarchy["waiters"]
        for waiter in waiters:
            set_load(waiter, 3)
        order = make_order()

        outcome = engine.automatic_assign(order.id)

        assert outcome.status == "queued"
        assert outcome.placement.position == 1
        assert outcome.to_dict()["position"] == 1
        assert order.staff_id is None
        assert loads(db_session, waiters) == [3, 3, 3]
        assert transport.events(EventType.QUEUE_UPDATED)
        assert not transport.events(EventType.ORDER_ASSIGNED)

    def test_require_immediate_raises_without_queueing(self, db_session, engine, seed_hierarchy, make_order, set_load):
        for waiter in seed_hierarchy["waiters"]:
            set_load(waiter, 3)
        order = make_order()

        with pytest.raises(NoWaitersAvailableError) as exc_info:
            engine.automatic_assign(order.id, require_immediate=True)

        assert exc_info.value.status_code == 503
        assert "Retry-After" in exc_info.value.headers
        assert engine.queue.get_entry(order.id) is None

    def test_waiters_outside_admin_chain_never_picked(self, db_session, engine, seed_hierarchy, make_order):
        seed_hierarchy["manager"].created_by_id = 999
        db_session.commit()
        order = make_order()

        outcome = engine.automatic_assign(order.id)

        assert outcome.status == "queued"
        assert order.staff_id is None
        assert loads(db_session, seed_hierarchy["waiters"]) == [0, 0, 0]

        with pytest.raises(NoWaitersAvailableError):
            engine.automatic_assign(make_order().id, require_immediate=True)

    def test_already_assigned(self, engine, seed_hierarchy, make_order):
        order = make_order()
        engine.automatic_assign(order.id)

        with pytest.raises(AlreadyAssignedError):
            engine.automatic_assign(order.id)

    def test_terminal_order_rejected(self, engine, seed_hierarchy, make_order):
        order = make_order(status=OrderStatus.CANCELLED)

        with pytest.raises(InvalidStateError):
            engine.automatic_assign(order.id)

    def test_unknown_order(self, engine, seed_hierarchy):
        with pytest.raises(NotFoundError):
            engine.automatic_assign(424242)

    def test_broken_hierarchy_mutates_nothing(self, db_session, engine, seed_hierarchy, make_order, transport):
        seed_hierarchy["branch"].admin_id = 555
        db_session.commit()
        order = make_order()

        with pytest.raises(InvalidHierarchyError) as exc_info:
            engine.automatic_assign(order.id)

        assert exc_info.value.reason == "Hotel and branch are managed by different admins"
        db_session.refresh(order)
        assert order.staff_id is None
        assert engine.queue.get_entry(order.id) is None
        assert history_of(db_session, order.id) == []
        assert loads(db_session, seed_hierarchy["waiters"]) == [0, 0, 0]
        assert transport.messages == []

    def test_lost_race_retries_with_fresh_candidates(self, db_session, engine, seed_hierarchy, make_order, monkeypatch):
        """A conditional increment that loses re-reads candidates instead of failing."""
        real = engine.registry.try_increment_load
        calls = []

        def flaky(waiter_id):
            calls.append(waiter_id)
            if len(calls) == 1:
                # Another process took the last slot on this waiter
                db_session.execute(
                    Staff.__table__.update()
                    .where(Staff.id == waiter_id)
                    .values(active_orders_count=Staff.max_capacity)
                )
                return None
            return real(waiter_id)

        monkeypatch.setattr(engine.registry, "try_increment_load", flaky)

        outcome = engine.automatic_assign(make_order().id)

        assert outcome.is_assigned
        assert outcome.waiter_id != calls[0]
        assert len(calls) == 2


class TestManualAssign:

    def test_assigns_specific_waiter(self, db_session, engine, seed_hierarchy, make_order):
        w3 = seed_hierarchy["waiters"][2]
        order = make_order()

        outcome = engine.manual_assign(order.id, w3.id, reason="Regular guest", actor_id=200)

        assert outcome.waiter_id == w3.id
        assert outcome.method == AssignmentMethod.MANUAL.value
        history = history_of(db_session, order.id)
        assert history[-1].reason == "Regular guest"
        assert history[-1].actor_id == 200

    def test_at_capacity(self, db_session, engine, seed_hierarchy, make_order, set_load):
        w1 = set_load(seed_hierarchy["waiters"][0], 3)
        order = make_order()

        with pytest.raises(CapacityExceededError) as exc_info:
            engine.manual_assign(order.id, w1.id, reason="Override")

        assert exc_info.value.detail == "Waiter is at maximum capacity (3 orders)"
        assert exc_info.value.status_code == 400
        assert loads(db_session, [w1]) == [3]

    def test_unavailable_but_active_waiter_allowed(self, db_session, engine, seed_hierarchy, make_order):
        w1 = seed_hierarchy["waiters"][0]
        w1.is_available = False
        db_session.commit()

        outcome = engine.manual_assign(make_order().id, w1.id, reason="Asked for them")

        assert outcome.waiter_id == w1.id

    def test_inactive_status_rejected(self, db_session, engine, seed_hierarchy, make_order):
        w1 = seed_hierarchy["waiters"][0]
        w1.status = WaiterStatus.ON_LEAVE
        db_session.commit()

        with pytest.raises(InvalidStateError):
            engine.manual_assign(make_order().id, w1.id, reason="Override")

    def test_waiter_of_other_branch_rejected(self, db_session, engine, seed_hierarchy, make_order):
        from rest_api.models import Branch

        db_session.add(Branch(id=11, hotel_id=1, name="Lobby Bar", admin_id=100))
        stranger = seed_hierarchy["waiters"][0]
        stranger.branch_id = 11
        db_session.commit()

        with pytest.raises(InvalidHierarchyError):
            engine.manual_assign(make_order().id, stranger.id, reason="Override")

    def test_manager_of_other_admin_rejected(self, db_session, engine, seed_hierarchy, make_order):
        seed_hierarchy["manager"].created_by_id = 999
        db_session.commit()

        with pytest.raises(InvalidHierarchyError):
            engine.manual_assign(make_order().id, seed_hierarchy["waiters"][0].id, reason="Override")

    def test_waiter_without_manager_rejected(self, db_session, engine, seed_hierarchy, make_order):
        orphan = seed_hierarchy["waiters"][0]
        orphan.manager_id = None
        db_session.commit()
        db_session.expire(orphan)

        with pytest.raises(InvalidHierarchyError):
            engine.manual_assign(make_order().id, orphan.id, reason="Override")

    def test_same_waiter_twice(self, engine, seed_hierarchy, make_order):
        w1 = seed_hierarchy["waiters"][0]
        order = make_order()
        engine.manual_assign(order.id, w1.id, reason="First")

        with pytest.raises(AlreadyAssignedError):
            engine.manual_assign(order.id, w1.id, reason="Again")

    def test_reassignment_moves_load_and_drains_queue(self, db_session, engine, seed_hierarchy, make_order, set_load, transport):
        w1, w2, w3 = seed_hierarchy["waiters"]
        order = make_order()
        engine.manual_assign(order.id, w1.id, reason="First")
        set_load(w1, 3)
        set_load(w2, 2)
        set_load(w3, 3)
        queued = make_order()
        assert engine.automatic_assign(queued.id).waiter_id == w2.id
        waiting = make_order()
        assert engine.automatic_assign(waiting.id).status == "queued"

        # Move the order to a waiter that has room
        set_load(w3, 2)
        outcome = engine.manual_assign(order.id, w3.id, reason="Move")

        assert outcome.previous_waiter_id == w1.id
        history = history_of(db_session, order.id)
        assert [(h.action, h.staff_id) for h in history] == [
            (HistoryAction.ASSIGNED, w1.id),
            (HistoryAction.REMOVED, w1.id),
            (HistoryAction.ASSIGNED, w3.id),
        ]
        # The slot freed on w1 went to the waiting order
        db_session.refresh(waiting)
        assert waiting.staff_id == w1.id
        assert engine.queue.size(10) == 0
        assert loads(db_session, [w1, w3]) == [3, 3]

        reassigned = [
            e for e in transport.events(EventType.ORDER_ASSIGNED)
            if e.payload.get("previousWaiterId") == w1.id
        ]
        assert {e.room for e in reassigned} >= {f"staff_{w1.id}", f"staff_{w3.id}"}


class TestRelease:

    def test_release_frees_slot_and_drains_queue(self, db_session, engine, seed_hierarchy, make_order, set_load, transport):
        w1, w2, w3 = seed_hierarchy["waiters"]
        set_load(w2, 3)
        set_load(w3, 3)
        set_load(w1, 2)
        held = make_order()
        engine.automatic_assign(held.id)
        assert held.staff_id == w1.id

        waiting = make_order()
        assert engine.automatic_assign(waiting.id).status == "queued"

        result = engine.release_on_terminal(held.id, OrderStatus.COMPLETED)

        assert result["released"] is True
        assert result["released_waiter_id"] == w1.id
        assert result["assigned_from_queue"] == [waiting.id]
        db_session.refresh(waiting)
        assert waiting.staff_id == w1.id
        assert loads(db_session, [w1]) == [3]
        assert w1.completed_orders == 1
        assert held.status == OrderStatus.COMPLETED
        assert held.completed_at is not None
        # Assignee is kept for reporting
        assert held.staff_id == w1.id
        assert transport.events(EventType.ORDER_STATUS_UPDATED)

    def test_release_is_idempotent(self, db_session, engine, seed_hierarchy, make_order):
        w1 = seed_hierarchy["waiters"][0]
        order = make_order()
        engine.manual_assign(order.id, w1.id, reason="Setup")

        engine.release_on_terminal(order.id, OrderStatus.CANCELLED)
        again = engine.release_on_terminal(order.id, OrderStatus.CANCELLED)

        assert again["released"] is False
        assert loads(db_session, [w1]) == [0]

    def test_release_of_queued_order_leaves_queue(self, engine, seed_hierarchy, make_order, set_load):
        for waiter in seed_hierarchy["waiters"]:
            set_load(waiter, 3)
        order = make_order()
        engine.automatic_assign(order.id)

        result = engine.release_on_terminal(order.id, OrderStatus.CANCELLED)

        assert result["released_waiter_id"] is None
        assert engine.queue.get_entry(order.id) is None

    def test_invalid_terminal_status(self, engine, seed_hierarchy, make_order):
        from shared.utils.exceptions import ValidationError

        with pytest.raises(ValidationError):
            engine.release_on_terminal(make_order().id, OrderStatus.READY)


class TestQueueDrain:

    def test_assign_from_queue_respects_priority(self, db_session, engine, seed_hierarchy, make_order, set_load):
        waiters = seed_hierarchy["waiters"]
        for waiter in waiters:
            set_load(waiter, 3)
        normal = make_order()
        urgent = make_order()
        engine.automatic_assign(normal.id)
        engine.automatic_assign(urgent.id, priority=QueuePriority.URGENT)

        set_load(waiters[0], 2)
        outcomes = engine.assign_from_queue(10)

        assert [o.order_id for o in outcomes] == [urgent.id]
        assert engine.queue.size(10) == 1

    def test_availability_change_drains(self, db_session, engine, seed_hierarchy, make_order, set_load):
        w1, w2, w3 = seed_hierarchy["waiters"]
        for waiter in (w2, w3):
            set_load(waiter, 3)
        w1.is_available = False
        db_session.commit()
        order = make_order()
        assert engine.automatic_assign(order.id).status == "queued"

        result = engine.update_waiter_availability(w1.id, True, reason="Back from break")

        assert result["assigned_from_queue"] == [order.id]
        assert result["waiter"]["active_orders_count"] == 1

    def test_stale_entry_dropped(self, db_session, engine, seed_hierarchy, make_order, set_load):
        for waiter in seed_hierarchy["waiters"]:
            set_load(waiter, 3)
        order = make_order()
        engine.automatic_assign(order.id)
        order.status = OrderStatus.CANCELLED
        db_session.commit()
        set_load(seed_hierarchy["waiters"][0], 0)

        assert engine.assign_from_queue(10) == []
        assert db_session.scalar(select(OrderQueueEntry).where(OrderQueueEntry.order_id == order.id)) is None


class TestMaintenance:

    def test_reset_round_robin(self, db_session, engine, seed_hierarchy, make_order):
        engine.automatic_assign(make_order().id)

        assert engine.reset_round_robin(branch_id=10) == 1

        cursor = db_session.scalar(select(RoundRobinCursor).where(RoundRobinCursor.branch_id == 10))
        assert cursor.last_waiter_id is None
        assert cursor.reset_at is not None

    def test_reconcile_repairs_counters_and_queue(self, db_session, engine, seed_hierarchy, make_order, set_load):
        w1, w2, _ = seed_hierarchy["waiters"]
        make_order(staff_id=w1.id)
        make_order(staff_id=w1.id)
        set_load(w2, 2)

        result = engine.reconcile()

        assert result["waiters_corrected"] == 2
        assert loads(db_session, [w1, w2]) == [2, 0]

    def test_find_orphans(self, db_session, engine, seed_hierarchy, make_order):
        old = make_order(paid_at=utc_now() - timedelta(minutes=10))
        make_order(paid_at=utc_now())
        make_order(paid_at=utc_now() - timedelta(minutes=10), payment_status="pending")

        assert engine.find_orphans(10, older_than_seconds=120) == [old.id]

    def test_detect_timeouts(self, db_session, engine, seed_hierarchy, make_order):
        late = make_order(
            staff_id=301,
            status=OrderStatus.PREPARING,
            assigned_at=utc_now() - timedelta(hours=2),
        )
        make_order(staff_id=302, status=OrderStatus.PREPARING, assigned_at=utc_now())

        assert engine.detect_timeouts(10) == [late.id]


class TestReadSide:

    def test_stats(self, engine, seed_hierarchy, make_order):
        engine.automatic_assign(make_order().id)

        stats = engine.get_stats(branch_id=10)

        assert stats["waiters"]["total"] == 3
        assert stats["current_load"] == 1
        assert stats["max_capacity"] == 9
        assert stats["recent_assignments"][0]["action"] == HistoryAction.ASSIGNED

    def test_simulation_writes_nothing(self, db_session, engine, seed_hierarchy, transport):
        result = engine.test_assignment(1, 10, SimulationType.ROUND_ROBIN)

        assert result["test_results"]["outcome"] == "assigned"
        assert result["test_results"]["selected_waiter"]["id"] == 301
        assert db_session.scalar(select(RoundRobinCursor)) is None
        assert transport.messages == []

    def test_simulation_reports_broken_hierarchy(self, db_session, engine, seed_hierarchy):
        result = engine.test_assignment(1, 999, SimulationType.HIERARCHY)

        assert result["test_results"]["hierarchy"] == {"is_valid": False, "reason": "Branch not found"}
