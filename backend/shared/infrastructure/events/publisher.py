"""
Event publishing with retry and circuit breaker.

EventPublisher is a pure fan-out adapter: it turns assignment state changes
into Event objects addressed to rooms and hands them to a transport. It never
raises; delivery problems are logged and swallowed so that an assignment
never fails because a notification could not be sent.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Iterable, Protocol

from shared.config.constants import EventType
from shared.config.settings import settings
from shared.config.logging import get_logger
from shared.infrastructure.correlation import get_request_id
from .channels import room_branch, room_hotel, room_staff, room_user
from .circuit_breaker import EventCircuitBreaker, calculate_retry_delay_with_jitter
from .event_schema import Event, MAX_EVENT_SIZE

logger = get_logger(__name__)


class EventTransport(Protocol):
    """Anything with a redis-style publish(channel, message)."""

    def publish(self, channel: str, message: str) -> Any: ...


class EventPublisher:
    """
    Fan-out of assignment events to rooms.

    Args:
        transport: Object exposing publish(channel, message), e.g. a sync
            redis client. None turns the publisher into a no-op sink.
        breaker: Circuit breaker; a fresh one is created when omitted.
        max_retries: Attempts per room before giving up.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        transport: EventTransport | None,
        breaker: EventCircuitBreaker | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._transport = transport
        self._breaker = breaker or EventCircuitBreaker(
            failure_threshold=settings.redis_publish_max_retries + 2,
        )
        self._max_retries = max(1, max_retries or settings.redis_publish_max_retries)
        self._retry_delay = retry_delay if retry_delay is not None else settings.redis_publish_retry_delay
        self._sleep = sleep
        self.published_count = 0
        self.failed_count = 0

    @property
    def breaker(self) -> EventCircuitBreaker:
        return self._breaker

    # -------------------------------------------------------------------------
    # Core fan-out
    # -------------------------------------------------------------------------

    def publish(
        self,
        event_type: str,
        rooms: Iterable[str],
        payload: dict[str, Any],
        hotel_id: int | None = None,
        branch_id: int | None = None,
    ) -> int:
        """
        Publish one event to every room (duplicates removed, order kept).

        Returns the number of rooms the transport accepted.
        """
        if self._transport is None:
            return 0

        delivered = 0
        for room in dict.fromkeys(rooms):
            try:
                event = Event(
                    type=event_type,
                    room=room,
                    payload=payload,
                    hotel_id=hotel_id,
                    branch_id=branch_id,
                    request_id=get_request_id() or None,
                )
                message = event.to_json()
            except (TypeError, ValueError) as e:
                logger.error("Dropping malformed event", event_type=event_type, room=room, error=str(e))
                self.failed_count += 1
                continue

            if len(message.encode("utf-8")) > MAX_EVENT_SIZE:
                logger.error("Dropping oversized event", event_type=event_type, room=room)
                self.failed_count += 1
                continue

            if self._send(room, message, event_type):
                delivered += 1
        return delivered

    def _send(self, room: str, message: str, event_type: str) -> bool:
        if not self._breaker.can_execute():
            logger.warning("Event publish skipped - circuit breaker open", room=room, event_type=event_type)
            self.failed_count += 1
            return False

        for attempt in range(self._max_retries):
            try:
                self._transport.publish(room, message)
            except Exception as e:
                if attempt < self._max_retries - 1:
                    delay = calculate_retry_delay_with_jitter(attempt, self._retry_delay)
                    logger.warning(
                        "Event publish failed, retrying",
                        room=room,
                        event_type=event_type,
                        attempt=attempt + 1,
                        delay_seconds=round(delay, 3),
                        error=str(e),
                    )
                    self._sleep(delay)
                    continue
                logger.error(
                    "Event publish failed after all retries",
                    room=room,
                    event_type=event_type,
                    error=str(e),
                )
                self._breaker.record_failure()
                self.failed_count += 1
                return False

            self._breaker.record_success()
            self.published_count += 1
            return True
        return False

    # -------------------------------------------------------------------------
    # Domain events
    # -------------------------------------------------------------------------

    def order_assigned(
        self,
        *,
        order_id: int,
        waiter_id: int,
        waiter_name: str,
        branch_id: int,
        hotel_id: int,
        method: str,
        customer_id: int | None = None,
        previous_waiter_id: int | None = None,
        assigned_at: str | None = None,
    ) -> int:
        payload = {
            "orderId": order_id,
            "waiterId": waiter_id,
            "waiterName": waiter_name,
            "assignmentMethod": method,
            "assignedAt": assigned_at,
            "branchId": branch_id,
            "hotelId": hotel_id,
        }
        rooms = [room_staff(waiter_id)]
        if previous_waiter_id and previous_waiter_id != waiter_id:
            payload["previousWaiterId"] = previous_waiter_id
            rooms.append(room_staff(previous_waiter_id))
        if customer_id:
            rooms.append(room_user(customer_id))
        rooms += [room_branch(branch_id), room_hotel(hotel_id)]
        return self.publish(EventType.ORDER_ASSIGNED, rooms, payload, hotel_id, branch_id)

    def order_status_updated(
        self,
        *,
        order_id: int,
        status: str,
        previous_status: str,
        branch_id: int,
        hotel_id: int,
        customer_id: int | None = None,
        waiter_id: int | None = None,
    ) -> int:
        payload = {
            "orderId": order_id,
            "status": status,
            "previousStatus": previous_status,
            "waiterId": waiter_id,
        }
        rooms = []
        if customer_id:
            rooms.append(room_user(customer_id))
        if waiter_id:
            rooms.append(room_staff(waiter_id))
        rooms.append(room_branch(branch_id))
        return self.publish(EventType.ORDER_STATUS_UPDATED, rooms, payload, hotel_id, branch_id)

    def waiter_availability_changed(
        self,
        *,
        waiter_id: int,
        branch_id: int,
        hotel_id: int,
        is_available: bool,
        status: str,
        reason: str | None = None,
        active_orders_count: int = 0,
        max_capacity: int = 0,
    ) -> int:
        payload = {
            "waiterId": waiter_id,
            "isAvailable": is_available,
            "status": status,
            "reason": reason,
            "activeOrdersCount": active_orders_count,
            "maxCapacity": max_capacity,
        }
        rooms = [room_staff(waiter_id), room_branch(branch_id), room_hotel(hotel_id)]
        return self.publish(EventType.WAITER_AVAILABILITY_CHANGED, rooms, payload, hotel_id, branch_id)

    def queue_updated(
        self,
        *,
        branch_id: int,
        hotel_id: int,
        summary: dict[str, Any],
    ) -> int:
        rooms = [room_branch(branch_id), room_hotel(hotel_id)]
        return self.publish(EventType.QUEUE_UPDATED, rooms, {"branchId": branch_id, **summary}, hotel_id, branch_id)


class RecordingTransport:
    """
    In-memory transport that keeps every published message.

    Used when no broker is configured (development) and by tests.
    """

    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def publish(self, channel: str, message: str) -> int:
        self.messages.append((channel, message))
        return 1

    def events(self, event_type: str | None = None) -> list[Event]:
        parsed = [Event.from_json(message) for _, message in self.messages]
        if event_type is None:
            return parsed
        return [e for e in parsed if e.type == event_type]
