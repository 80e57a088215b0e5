"""
Event Schema.

Defines the Event dataclass carried by every real-time notification.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any

from shared.config.constants import EventType

# Upper bound for a serialized event (bytes)
MAX_EVENT_SIZE = 64 * 1024


@dataclass
class Event:
    """
    One notification addressed to one room.

    `payload` holds the event-specific data (order, waiter, queue figures).
    `request_id` ties the event back to the request or monitoring cycle
    that produced it.
    """

    type: str
    room: str
    payload: dict[str, Any] = field(default_factory=dict)
    hotel_id: int | None = None
    branch_id: int | None = None
    request_id: str | None = None
    ts: str | None = None
    v: int = 1  # Schema version

    def __post_init__(self) -> None:
        if self.type not in EventType.ALL:
            raise ValueError(f"Unknown event type: {self.type!r}")

        if not self.room or not isinstance(self.room, str):
            raise ValueError("Event room must be a non-empty string")

        if not isinstance(self.payload, dict):
            raise ValueError("Event payload must be a dict")

        for name in ("hotel_id", "branch_id"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or value <= 0):
                raise ValueError(f"Event {name} must be a positive integer or None")

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        data = asdict(self)
        data["ts"] = data["ts"] or datetime.now(timezone.utc).isoformat()
        return json.dumps(data, ensure_ascii=False, default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        """Deserialize event from JSON string (validated in __post_init__)."""
        return cls(**json.loads(json_str))
