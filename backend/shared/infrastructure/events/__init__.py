"""
Event system for real-time assignment notifications.

- event_schema.py: Event dataclass with validation
- channels.py: room naming (staff_<id>, branch_<id>, hotel_<id>, user_<id>)
- circuit_breaker.py: breaker + backoff for the transport
- publisher.py: EventPublisher fan-out adapter
- redis_pool.py: Redis connection pools
"""

from .circuit_breaker import (
    CircuitState,
    EventCircuitBreaker,
    calculate_retry_delay_with_jitter,
)
from .event_schema import Event, MAX_EVENT_SIZE
from .channels import room_staff, room_branch, room_hotel, room_user
from .publisher import EventPublisher, EventTransport, RecordingTransport
from .redis_pool import (
    get_redis_pool,
    get_redis_sync_client,
    close_redis_pool,
    close_redis_sync_client,
)

__all__ = [
    "CircuitState",
    "EventCircuitBreaker",
    "calculate_retry_delay_with_jitter",
    "Event",
    "MAX_EVENT_SIZE",
    "room_staff",
    "room_branch",
    "room_hotel",
    "room_user",
    "EventPublisher",
    "EventTransport",
    "RecordingTransport",
    "get_redis_pool",
    "get_redis_sync_client",
    "close_redis_pool",
    "close_redis_sync_client",
]
