"""Async client for the Firebase Realtime Database."""

from fireclient.channel import ChannelClosed, EventChannel
from fireclient.database import DatabaseRef, OpType
from fireclient.errors import CredentialsError, FirebaseError, ServerError, TokenError
from fireclient.events import Event, EventType
from fireclient.pushid import PushIDGenerator, generate_push_id
from fireclient.query import (
    end_at,
    equal_to,
    limit_to_first,
    limit_to_last,
    order_by,
    print_pretty,
    shallow,
    start_at,
)
from fireclient.serverval import SERVER_TIMESTAMP, ServerTimestamp
from fireclient.watch import listen, watch

__all__ = [
    "SERVER_TIMESTAMP",
    "ChannelClosed",
    "CredentialsError",
    "DatabaseRef",
    "Event",
    "EventChannel",
    "EventType",
    "FirebaseError",
    "OpType",
    "PushIDGenerator",
    "ServerError",
    "ServerTimestamp",
    "TokenError",
    "end_at",
    "equal_to",
    "generate_push_id",
    "limit_to_first",
    "limit_to_last",
    "listen",
    "order_by",
    "print_pretty",
    "shallow",
    "start_at",
    "watch",
]
