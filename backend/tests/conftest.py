"""
Pytest configuration and fixtures for backend tests.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rest_api.main import app
from rest_api.models import Base, Branch, Hotel, Order, Staff
from rest_api.routers.assignment._base import get_event_publisher, get_monitor
from rest_api.services.assignment import BranchLockRegistry, MonitoringLoop
from shared.config.constants import OrderStatus, PaymentStatus, Roles, WaiterStatus
from shared.infrastructure.db import get_db
from shared.infrastructure.events import EventPublisher, RecordingTransport
from shared.security.auth import sign_jwt
from shared.security.rate_limit import limiter
from shared.utils.dates import utc_now


# SQLite in-memory database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
# Same session options as production: objects stay readable after commit
TestingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

HOTEL_ID = 1
BRANCH_ID = 10
ADMIN_ID = 100
MANAGER_ID = 200
WAITER_IDS = (301, 302, 303)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Uses SQLite in-memory for isolation.
    """
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def transport():
    """In-memory event transport; inspect .messages / .events()."""
    return RecordingTransport()


@pytest.fixture
def publisher(transport):
    return EventPublisher(transport, sleep=lambda _: None)


@pytest.fixture
def locks():
    """Fresh lock registry so tests never share branch locks."""
    return BranchLockRegistry()


# =============================================================================
# Hierarchy seed
# =============================================================================


@pytest.fixture
def seed_hierarchy(db_session):
    """
    One hotel with one branch, both owned by the same admin, a manager
    created by that admin and three waiters (capacity 3) under the manager.
    """
    hotel = Hotel(id=HOTEL_ID, name="Grand Hotel", admin_id=ADMIN_ID)
    branch = Branch(id=BRANCH_ID, hotel_id=HOTEL_ID, name="Rooftop", admin_id=ADMIN_ID)
    db_session.add_all([hotel, branch])
    db_session.flush()

    admin = Staff(
        id=ADMIN_ID,
        hotel_id=HOTEL_ID,
        email="admin@hotel.test",
        first_name="Ada",
        last_name="Admin",
        role=Roles.ADMIN,
    )
    manager = Staff(
        id=MANAGER_ID,
        hotel_id=HOTEL_ID,
        branch_id=BRANCH_ID,
        email="manager@hotel.test",
        first_name="Max",
        last_name="Manager",
        role=Roles.MANAGER,
        created_by_id=ADMIN_ID,
    )
    db_session.add_all([admin, manager])
    db_session.flush()

    waiters = [
        Staff(
            id=waiter_id,
            hotel_id=HOTEL_ID,
            branch_id=BRANCH_ID,
            email=f"waiter{waiter_id}@hotel.test",
            first_name="Waiter",
            last_name=str(waiter_id),
            role=Roles.WAITER,
            manager_id=MANAGER_ID,
            status=WaiterStatus.ACTIVE,
            is_available=True,
            active_orders_count=0,
            max_capacity=3,
        )
        for waiter_id in WAITER_IDS
    ]
    db_session.add_all(waiters)
    db_session.commit()

    return {
        "hotel": hotel,
        "branch": branch,
        "admin": admin,
        "manager": manager,
        "waiters": waiters,
    }


@pytest.fixture
def make_order(db_session):
    """Factory for paid, unassigned orders of the seeded branch."""

    def _make(branch_id=BRANCH_ID, hotel_id=HOTEL_ID, **fields):
        values = {
            "status": OrderStatus.CONFIRMED,
            "payment_status": PaymentStatus.PAID,
            "paid_at": utc_now() - timedelta(seconds=5),
            "total_cents": 2500,
        }
        values.update(fields)
        order = Order(hotel_id=hotel_id, branch_id=branch_id, **values)
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture
def set_load(db_session):
    """Overwrite a waiter's counters directly (test setup only)."""

    def _set(waiter, count, max_capacity=None):
        waiter.active_orders_count = count
        if max_capacity is not None:
            waiter.max_capacity = max_capacity
        db_session.commit()
        return waiter

    return _set


# =============================================================================
# Authentication
# =============================================================================


def token_headers(sub, roles, hotel_ids=(), branch_ids=()):
    token = sign_jwt({
        "sub": str(sub),
        "roles": list(roles),
        "hotel_ids": list(hotel_ids),
        "branch_ids": list(branch_ids),
    })
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def super_admin_headers():
    return token_headers(1, [Roles.SUPER_ADMIN])


@pytest.fixture
def admin_headers():
    return token_headers(ADMIN_ID, [Roles.ADMIN], hotel_ids=[HOTEL_ID])


@pytest.fixture
def manager_headers():
    return token_headers(MANAGER_ID, [Roles.MANAGER], hotel_ids=[HOTEL_ID], branch_ids=[BRANCH_ID])


@pytest.fixture
def waiter_headers():
    return token_headers(WAITER_IDS[0], [Roles.WAITER], hotel_ids=[HOTEL_ID], branch_ids=[BRANCH_ID])


@pytest.fixture
def other_branch_headers():
    """Manager of a branch that is not the seeded one."""
    return token_headers(999, [Roles.MANAGER], hotel_ids=[2], branch_ids=[20])


# =============================================================================
# HTTP client
# =============================================================================


@pytest.fixture
def monitor(publisher):
    return MonitoringLoop(session_factory=TestingSessionLocal, publisher=publisher)


@pytest.fixture(scope="function")
def client(db_session, publisher, monitor):
    """
    Test client with database, publisher and monitoring overrides.

    The lifespan is not entered: no Redis, no background loop.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    app.dependency_overrides[get_monitor] = lambda: monitor
    limiter.reset()

    yield TestClient(app)

    app.dependency_overrides.clear()
