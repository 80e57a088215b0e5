"""
Concurrent assign/release against one branch.

Every worker thread has its own session on a shared file-backed SQLite
database and goes through the same BranchLockRegistry, the way request
threads do in the API process.
"""

import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path

from hypothesis import given, settings, strategies as st
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from rest_api.models import Base, Branch, Hotel, Order, OrderQueueEntry, Staff
from rest_api.services.assignment import AssignmentEngine, BranchLockRegistry
from shared.config.constants import OrderStatus, PaymentStatus, Roles, WaiterStatus
from shared.infrastructure.events import EventPublisher
from shared.utils.dates import utc_now


@contextmanager
def _branch_database(capacities, order_count):
    """Seed one branch with a waiter per capacity; yields (session factory, order ids)."""
    with tempfile.TemporaryDirectory() as directory:
        engine = create_engine(
            f"sqlite:///{Path(directory) / 'assignment.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=engine)
        factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        session = factory()
        try:
            session.add_all([
                Hotel(id=1, name="Hotel", admin_id=100),
                Branch(id=10, hotel_id=1, name="Branch", admin_id=100),
            ])
            session.flush()
            session.add(Staff(id=200, hotel_id=1, branch_id=10, email="m@test", first_name="M", last_name="M",
                              role=Roles.MANAGER, created_by_id=100))
            session.flush()
            session.add_all([
                Staff(
                    id=301 + index,
                    hotel_id=1,
                    branch_id=10,
                    email=f"w{301 + index}@test",
                    first_name="W",
                    last_name=str(301 + index),
                    role=Roles.WAITER,
                    manager_id=200,
                    status=WaiterStatus.ACTIVE,
                    is_available=True,
                    active_orders_count=0,
                    max_capacity=capacity,
                )
                for index, capacity in enumerate(capacities)
            ])
            orders = [
                Order(
                    hotel_id=1,
                    branch_id=10,
                    status=OrderStatus.CONFIRMED,
                    payment_status=PaymentStatus.PAID,
                    paid_at=utc_now(),
                    total_cents=1000,
                )
                for _ in range(order_count)
            ]
            session.add_all(orders)
            session.commit()
            order_ids = [order.id for order in orders]
        finally:
            session.close()

        try:
            yield factory, order_ids
        finally:
            engine.dispose()


def _worker(factory, locks, barrier, order_ids, release_every, failures):
    session = factory()
    engine = AssignmentEngine(session, EventPublisher(None), locks)
    try:
        barrier.wait(timeout=10)
        for index, order_id in enumerate(order_ids):
            outcome = engine.automatic_assign(order_id)
            if outcome.status == "assigned" and index % release_every == 0:
                engine.release_on_terminal(order_id)
    except Exception as e:
        failures.append(e)
    finally:
        session.close()


class TestConcurrentAssignment:

    @given(
        capacities=st.lists(st.integers(min_value=1, max_value=3), min_size=1, max_size=3),
        thread_count=st.integers(min_value=2, max_value=6),
        orders_per_thread=st.integers(min_value=1, max_value=5),
        release_every=st.integers(min_value=1, max_value=3),
    )
    @settings(max_examples=5, deadline=None)
    def test_capacity_holds_under_parallel_assign_and_release(
        self, capacities, thread_count, orders_per_thread, release_every
    ):
        with _branch_database(capacities, thread_count * orders_per_thread) as (factory, order_ids):
            locks = BranchLockRegistry()
            barrier = threading.Barrier(thread_count)
            failures = []
            threads = [
                threading.Thread(
                    target=_worker,
                    args=(factory, locks, barrier, order_ids[i::thread_count], release_every, failures),
                )
                for i in range(thread_count)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=60)

            assert not any(thread.is_alive() for thread in threads)
            assert failures == []

            session = factory()
            try:
                waiters = session.scalars(select(Staff).where(Staff.role == Roles.WAITER)).all()
                for waiter in waiters:
                    open_count = session.scalar(
                        select(func.count(Order.id)).where(
                            Order.staff_id == waiter.id,
                            Order.status.not_in(OrderStatus.TERMINAL),
                        )
                    )
                    assert 0 <= waiter.active_orders_count <= waiter.max_capacity
                    assert waiter.active_orders_count == open_count

                queued_ids = set(session.scalars(select(OrderQueueEntry.order_id)).all())
                for order in session.scalars(select(Order)).all():
                    if order.status in OrderStatus.TERMINAL:
                        assert order.id not in queued_ids
                    else:
                        # Each open order is either with a waiter or in the queue
                        assert (order.staff_id is None) == (order.id in queued_ids)

                if queued_ids:
                    assert all(w.active_orders_count == w.max_capacity for w in waiters)
            finally:
                session.close()
