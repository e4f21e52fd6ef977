"""Event values emitted by watch and listen."""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventType(str, Enum):
    # server-sent events
    PUT = "put"
    PATCH = "patch"
    KEEP_ALIVE = "keep-alive"
    CANCEL = "cancel"  # security rules no longer allow reading the ref
    AUTH_REVOKED = "auth_revoked"  # auth token revoked or expired

    # synthesized locally, never sent by the server
    CLOSED = "closed"
    UNKNOWN_ERROR = "unknown_error"
    MALFORMED_EVENT_ERROR = "malformed_event_error"
    MALFORMED_DATA_ERROR = "malformed_data_error"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, raw: str) -> "EventType | str":
        """Map a wire event name to an EventType, keeping unknown names as-is."""
        try:
            return cls(raw)
        except ValueError:
            return raw


SYNTHESIZED_TYPES = frozenset({
    EventType.CLOSED,
    EventType.UNKNOWN_ERROR,
    EventType.MALFORMED_EVENT_ERROR,
    EventType.MALFORMED_DATA_ERROR,
})


@dataclass(frozen=True)
class Event:
    """A server-side event, or a locally synthesized stream diagnostic.

    For protocol events ``data`` is the JSON document sent by the server,
    normally ``{"path": ..., "data": ...}``. For synthesized events it is a
    human readable description of why the stream ended.
    """

    type: EventType | str
    data: bytes = b""

    @property
    def is_terminal(self) -> bool:
        return self.type in SYNTHESIZED_TYPES

    def json(self) -> Any:
        """Decode the payload as JSON."""
        return json.loads(self.data)

    def __str__(self) -> str:
        return f"{self.type}: {self.data.decode('utf-8', errors='replace')}"
