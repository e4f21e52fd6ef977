"""Realtime change streams: single sessions (watch) and supervised ones (listen).

``watch`` opens one streaming request and pumps parsed events into a bounded
channel from a background task. The channel ends with exactly one terminal
event (``closed``, ``unknown_error``, ...) unless the caller stops it first,
in which case it simply closes.

``listen`` keeps a logical stream alive across sessions: whenever a session
ends it discards the terminal event and immediately opens a new one. Its
channel closes only when the stop signal is set, or when a session cannot
be established at all.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Iterable

import httpx

from fireclient.channel import ChannelClosed, EventChannel
from fireclient.errors import FirebaseError
from fireclient.events import Event, EventType
from fireclient.query import QueryParams
from fireclient.sse import FrameReader

if TYPE_CHECKING:
    from fireclient.database import DatabaseRef

logger = logging.getLogger(__name__)

WATCH_TASK_NAME = "fireclient-watch"
LISTEN_TASK_NAME = "fireclient-listen"

# strong references to running loops, so they are not garbage collected
_background_tasks: set[asyncio.Task] = set()


def _spawn(coro, name: str) -> asyncio.Task:
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def _first(aw: Awaitable, stop_waiter: asyncio.Future) -> tuple[bool, Any]:
    """Race ``aw`` against the stop signal.

    Returns ``(True, result)`` when ``aw`` finishes first, otherwise cancels
    it and returns ``(False, None)``. Exceptions raised by ``aw`` propagate.
    """
    task = asyncio.ensure_future(aw)
    try:
        await asyncio.wait({task, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task.done():
        return True, task.result()

    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        task.exception()
    return False, None


async def _read_loop(
    response: httpx.Response,
    events: EventChannel[Event],
    stop: asyncio.Event,
    url: str,
) -> None:
    reader = FrameReader(response.aiter_bytes())
    stop_waiter = asyncio.ensure_future(stop.wait())
    try:
        while not stop.is_set():
            ok, event = await _first(reader.read_event(), stop_waiter)
            if not ok:
                break

            ok, _ = await _first(events.send(event), stop_waiter)
            if not ok:
                break

            if event.is_terminal:
                logger.debug("Stream session for %s ended: %s", url, event)
                return
        logger.debug("Stream session for %s stopped", url)
    finally:
        stop_waiter.cancel()
        await response.aclose()
        await events.close()


async def watch(
    ref: "DatabaseRef", stop: asyncio.Event, *params: QueryParams
) -> EventChannel[Event]:
    """Watch a database ref, emitting its events on the returned channel.

    The session ends when ``stop`` is set, when the server closes the
    connection, or when malformed data is read. Failure to establish the
    connection raises FirebaseError and starts nothing.
    """
    response = await ref.open_stream(*params)
    events: EventChannel[Event] = EventChannel(ref.watch_buffer_len)
    _spawn(_read_loop(response, events, stop, str(ref.url)), WATCH_TASK_NAME)
    logger.debug("Opened stream session for %s", ref.url)
    return events


async def _supervise(
    ref: "DatabaseRef",
    stop: asyncio.Event,
    wanted: frozenset,
    params: tuple[QueryParams, ...],
    events: EventChannel[Event],
) -> None:
    stop_waiter = asyncio.ensure_future(stop.wait())
    sessions = 0
    try:
        while not stop.is_set():
            try:
                ok, session = await _first(watch(ref, stop, *params), stop_waiter)
            except FirebaseError as e:
                logger.error("Could not establish stream for %s: %s", ref.url, e)
                return
            if not ok:
                return

            sessions += 1
            if sessions > 1:
                logger.info("Reconnected stream for %s (session %d)", ref.url, sessions)

            while True:
                try:
                    ok, event = await _first(session.receive(), stop_waiter)
                except ChannelClosed:
                    break
                if not ok:
                    return

                if event.is_terminal:
                    logger.info("Stream for %s interrupted: %s", ref.url, event)
                    continue
                if event.type not in wanted:
                    continue

                ok, _ = await _first(events.send(event), stop_waiter)
                if not ok:
                    return
    finally:
        stop_waiter.cancel()
        await events.close()
        logger.debug("Stopped listening on %s", ref.url)


def listen(
    ref: "DatabaseRef",
    stop: asyncio.Event,
    event_types: Iterable[EventType | str],
    *params: QueryParams,
) -> EventChannel[Event]:
    """Listen on a database ref for the given event types.

    Sessions that end, for example because the connection dropped or the
    auth token was revoked, are reopened immediately and without limit. The
    returned channel closes only once ``stop`` is set, or if a connection
    cannot be established. Must be called from a running event loop.
    """
    wanted = frozenset(EventType.parse(str(t)) for t in event_types)
    events: EventChannel[Event] = EventChannel(ref.watch_buffer_len)
    _spawn(_supervise(ref, stop, wanted, params, events), LISTEN_TASK_NAME)
    return events
