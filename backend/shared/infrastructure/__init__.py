"""
Infrastructure module: Database and Redis/events.

Provides:
- Database sessions and transactions (db.py)
- Event publishing for real-time notifications (events/)
- Request correlation IDs (correlation.py)
"""

from shared.infrastructure.db import (
    engine,
    SessionLocal,
    get_db,
    get_db_context,
    safe_commit,
)
from shared.infrastructure.events import (
    EventPublisher,
    get_redis_pool,
    get_redis_sync_client,
    close_redis_pool,
)

__all__ = [
    # db
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "safe_commit",
    # events
    "EventPublisher",
    "get_redis_pool",
    "get_redis_sync_client",
    "close_redis_pool",
]
