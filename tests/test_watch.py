"""Tests for watch sessions and the reconnecting listen supervisor."""

import asyncio

import httpx
import pytest

from fireclient.channel import EventChannel
from fireclient.database import DatabaseRef
from fireclient.errors import FirebaseError, ServerError
from fireclient.events import Event, EventType
from fireclient.query import order_by
from fireclient.watch import LISTEN_TASK_NAME, WATCH_TASK_NAME, listen, watch

from tests.conftest import TEST_URL


def frame(event: str, data: str) -> bytes:
    return f"event: {event}\ndata: {data}\n\n".encode()


class Script:
    """One scripted streaming connection."""

    def __init__(self, *chunks: bytes, hold: bool = False, status: int = 200, body=None):
        self.chunks = chunks
        self.hold = hold
        self.status = status
        self.body = body

    async def stream(self):
        for chunk in self.chunks:
            yield chunk
        if self.hold:
            await asyncio.Event().wait()


class FakeStreamServer:
    """Serves one Script per incoming connection; extra connections hang."""

    def __init__(self, *scripts: Script):
        self.scripts = list(scripts)
        self.requests: list[httpx.Request] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        idx = len(self.requests) - 1
        script = self.scripts[idx] if idx < len(self.scripts) else Script(hold=True)
        if script.status != 200:
            return httpx.Response(script.status, json=script.body)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=script.stream(),
        )

    def ref(self, **kwargs) -> DatabaseRef:
        return DatabaseRef(TEST_URL, transport=httpx.MockTransport(self.handler), **kwargs)


async def _next(ch: EventChannel, timeout: float = 1.0) -> Event:
    return await asyncio.wait_for(ch.receive(), timeout=timeout)


async def _drain(ch: EventChannel, timeout: float = 1.0) -> list[Event]:
    async def _collect():
        return [ev async for ev in ch]
    return await asyncio.wait_for(_collect(), timeout=timeout)


async def _loops_finished(timeout: float = 1.0) -> bool:
    """True once no watch/listen background task is left running."""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        running = [
            t for t in asyncio.all_tasks()
            if t.get_name() in (WATCH_TASK_NAME, LISTEN_TASK_NAME) and not t.done()
        ]
        if not running:
            return True
        await asyncio.sleep(0.01)
    return False


class TestWatch:
    @pytest.mark.asyncio
    async def test_events_then_closed(self):
        server = FakeStreamServer(
            Script(frame("put", '{"path":"/","data":1}'), frame("patch", '{"path":"/a","data":2}'))
        )
        ref = server.ref()

        events = await watch(ref.child("items"), asyncio.Event())
        received = await _drain(events)

        assert [e.type for e in received] == [
            EventType.PUT, EventType.PATCH, EventType.CLOSED,
        ]
        assert received[0].json() == {"path": "/", "data": 1}
        assert events.closed
        assert await _loops_finished()
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_request_shape(self):
        server = FakeStreamServer(Script())
        ref = server.ref(params={"auth": "secret"})

        events = await ref.child("/users/alice").watch(asyncio.Event(), order_by("age"))
        await _drain(events)

        req = server.requests[0]
        assert req.method == "GET"
        assert req.url.path == "/users/alice.json"
        assert req.headers["accept"] == "text/event-stream"
        assert req.url.params["auth"] == "secret"
        assert req.url.params["orderBy"] == '"age"'
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_malformed_frame_is_terminal(self):
        server = FakeStreamServer(
            Script(frame("put", "1"), b"garbage\n", frame("put", "2"), hold=True)
        )
        ref = server.ref()

        received = await _drain(await watch(ref, asyncio.Event()))

        assert received == [
            Event(EventType.PUT, b"1"),
            Event(EventType.MALFORMED_EVENT_ERROR, b"missing prefix"),
        ]
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_server_error_raised_synchronously(self):
        server = FakeStreamServer(Script(status=401, body={"error": "Permission denied"}))
        ref = server.ref()

        with pytest.raises(ServerError) as exc_info:
            await watch(ref, asyncio.Event())

        assert exc_info.value.status_code == 401
        assert str(exc_info.value) == "firebase: Permission denied"
        assert await _loops_finished()
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_raised(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        ref = DatabaseRef(TEST_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(FirebaseError, match="could not execute request"):
            await watch(ref, asyncio.Event())
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_stop_closes_without_terminal_event(self):
        server = FakeStreamServer(Script(frame("put", "1"), hold=True))
        ref = server.ref()
        stop = asyncio.Event()

        events = await watch(ref, stop)
        assert (await _next(events)).type is EventType.PUT

        stop.set()
        assert await _drain(events) == []
        assert events.closed
        assert await _loops_finished()
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_slow_consumer_applies_backpressure(self):
        frames = [frame("put", str(i)) for i in range(5)]
        server = FakeStreamServer(Script(*frames))
        ref = server.ref(watch_buffer_len=2)

        events = await watch(ref, asyncio.Event())
        await asyncio.sleep(0.05)
        assert events.qsize() == 2
        assert not events.closed

        received = await _drain(events)
        assert [e.data for e in received[:5]] == [b"0", b"1", b"2", b"3", b"4"]
        assert received[5].type is EventType.CLOSED
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_stop_while_blocked_on_full_buffer(self):
        frames = [frame("put", str(i)) for i in range(5)]
        server = FakeStreamServer(Script(*frames, hold=True))
        ref = server.ref(watch_buffer_len=1)
        stop = asyncio.Event()

        events = await watch(ref, stop)
        await asyncio.sleep(0.05)
        stop.set()

        assert await _loops_finished()
        assert events.closed
        await ref.aclose()


class TestListen:
    @pytest.mark.asyncio
    async def test_filters_event_types(self):
        server = FakeStreamServer(
            Script(
                frame("put", "1"),
                frame("patch", "2"),
                frame("keep-alive", "null"),
                frame("put", "3"),
                hold=True,
            )
        )
        ref = server.ref()
        stop = asyncio.Event()

        events = listen(ref, stop, [EventType.PUT])
        first = await _next(events)
        second = await _next(events)
        assert [first.data, second.data] == [b"1", b"3"]

        stop.set()
        assert await _drain(events) == []
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_accepts_string_event_types(self):
        server = FakeStreamServer(Script(frame("patch", "1"), hold=True))
        ref = server.ref()
        stop = asyncio.Event()

        events = ref.listen(stop, ["patch"])
        assert (await _next(events)).type is EventType.PATCH

        stop.set()
        await _drain(events)
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_reconnects_after_session_ends(self):
        server = FakeStreamServer(
            Script(frame("put", "1")),
            Script(frame("put", "2"), b"oops\n"),
            Script(frame("put", "3"), hold=True),
        )
        ref = server.ref()
        stop = asyncio.Event()

        events = listen(ref, stop, [EventType.PUT, EventType.CLOSED])
        received = [await _next(events) for _ in range(3)]

        assert [e.data for e in received] == [b"1", b"2", b"3"]
        assert all(e.type is EventType.PUT for e in received)
        assert not events.closed
        assert len(server.requests) == 3

        stop.set()
        assert await _drain(events) == []
        assert await _loops_finished()
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_stop_before_any_data(self):
        server = FakeStreamServer(Script(frame("put", "1"), hold=True))
        ref = server.ref()
        stop = asyncio.Event()
        stop.set()

        events = listen(ref, stop, [EventType.PUT])

        assert await _drain(events) == []
        assert events.closed
        assert await _loops_finished()
        await asyncio.sleep(0.05)
        assert server.requests == []
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_stop_while_stream_idle(self):
        server = FakeStreamServer(Script(hold=True))
        ref = server.ref()
        stop = asyncio.Event()

        events = listen(ref, stop, [EventType.PUT])
        await asyncio.sleep(0.05)
        assert not events.closed

        stop.set()
        assert await _drain(events) == []
        assert await _loops_finished()
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_establishment_failure_closes_channel(self):
        server = FakeStreamServer(Script(status=403, body={"error": "Permission denied"}))
        ref = server.ref()

        events = listen(ref, asyncio.Event(), [EventType.PUT])

        assert await _drain(events) == []
        assert await _loops_finished()
        await ref.aclose()

    @pytest.mark.asyncio
    async def test_failed_reconnect_closes_channel(self):
        server = FakeStreamServer(
            Script(frame("put", "1")),
            Script(status=401, body={"error": "Auth token is expired"}),
        )
        ref = server.ref()

        events = listen(ref, asyncio.Event(), [EventType.PUT])
        received = await _drain(events)

        assert [e.data for e in received] == [b"1"]
        assert len(server.requests) == 2
        await ref.aclose()
