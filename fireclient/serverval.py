"""Server values and millisecond time helpers.

The database stores times as JSON numbers of milliseconds since the Unix
epoch. Writing the placeholder ``{".sv": "timestamp"}`` asks the server to
store its own current time instead.
"""

import json
from datetime import datetime, timezone
from typing import Any

SERVER_TIMESTAMP: dict[str, str] = {".sv": "timestamp"}


def to_millis(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds; naive values are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def from_millis(ms: int | float) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


class ServerTimestamp:
    """A timestamp that serializes to the server placeholder when unset.

    ``ServerTimestamp()`` is written as ``{".sv": "timestamp"}``;
    ``ServerTimestamp(dt)`` is written as epoch milliseconds.
    """

    __slots__ = ("time",)

    def __init__(self, time: datetime | None = None):
        self.time = time

    def to_json(self) -> Any:
        if self.time is None:
            return dict(SERVER_TIMESTAMP)
        return to_millis(self.time)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ServerTimestamp) and other.time == self.time

    def __repr__(self) -> str:
        return f"ServerTimestamp({self.time!r})"


def parse_server_timestamp(value: Any) -> datetime | None:
    """Decode a stored timestamp: null, the placeholder, or milliseconds."""
    if value is None:
        return None
    if value == SERVER_TIMESTAMP:
        return datetime.now(timezone.utc)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"not a millisecond timestamp: {value!r}")
    return from_millis(value)


class FirebaseJSONEncoder(json.JSONEncoder):
    """JSON encoder that writes datetimes as epoch milliseconds."""

    def default(self, obj):
        if isinstance(obj, ServerTimestamp):
            return obj.to_json()
        if isinstance(obj, datetime):
            return to_millis(obj)
        return super().default(obj)


def dumps(value: Any, **kwargs) -> bytes:
    return json.dumps(value, cls=FirebaseJSONEncoder, **kwargs).encode("utf-8")
