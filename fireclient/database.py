"""Async client for the Firebase Realtime Database REST API."""

import asyncio
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Iterable
from urllib.parse import quote, urlsplit, urlunsplit

import httpx

from fireclient import serverval
from fireclient.auth import BearerAuth, ServiceAccountCredentials, ServiceAccountTokenSource
from fireclient.channel import EventChannel
from fireclient.config import settings
from fireclient.errors import FirebaseError, acheck_server_error, check_server_error
from fireclient.events import Event, EventType
from fireclient.query import QueryParams, merge_params
from fireclient.watch import listen, watch

logger = logging.getLogger(__name__)

RULES_PATH = "/.settings/rules"


class OpType(str, Enum):
    GET = "GET"
    PUSH = "POST"
    SET = "PUT"
    UPDATE = "PATCH"
    REMOVE = "DELETE"


def _join_path(base: str, path: str) -> str:
    if not base.endswith("/"):
        base += "/"
    return base + path.lstrip("/")


class DatabaseRef:
    """A reference to a location in the database.

    Child refs created with ``child`` share the parent's HTTP client, auth
    and default query parameters. Only the root ref owns the client; close
    it with ``aclose`` or use the root as an async context manager.
    """

    def __init__(
        self,
        url: str,
        *,
        auth: httpx.Auth | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        params: QueryParams | None = None,
        watch_buffer_len: int | None = None,
        timeout: float | None = None,
        log_http: bool = False,
        client: httpx.AsyncClient | None = None,
    ):
        if not url:
            raise FirebaseError("no firebase url specified")
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            raise FirebaseError(f"could not parse url: {url!r}")

        self._url = url
        self._auth = auth
        self.params: QueryParams = dict(params or {})
        self.watch_buffer_len = watch_buffer_len or settings.WATCH_BUFFER
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT
        self.log_http = log_http

        self._owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(transport=transport, auth=auth)
        self._client = client

    # -- construction ----------------------------------------------------

    @classmethod
    def from_service_account(
        cls,
        credentials: ServiceAccountCredentials,
        *,
        url: str | None = None,
        uid: str | None = None,
        claims: dict[str, Any] | None = None,
        token_transport: httpx.AsyncBaseTransport | None = None,
        **kwargs,
    ) -> "DatabaseRef":
        """Create a root ref authorized as a service account.

        ``uid`` and ``claims`` are added to the token assertion.
        """
        extra: dict[str, Any] = {}
        if uid:
            extra["uid"] = uid
        if claims:
            extra["claims"] = claims
        source = ServiceAccountTokenSource(
            credentials, extra_claims=extra, transport=token_transport
        )
        return cls(url or credentials.database_url, auth=BearerAuth(source), **kwargs)

    @classmethod
    def from_service_account_json(cls, data: str | bytes | dict, **kwargs) -> "DatabaseRef":
        return cls.from_service_account(ServiceAccountCredentials.from_json(data), **kwargs)

    @classmethod
    def from_service_account_file(cls, path: str | Path, **kwargs) -> "DatabaseRef":
        return cls.from_service_account(ServiceAccountCredentials.from_file(path), **kwargs)

    @classmethod
    def from_settings(cls, **kwargs) -> "DatabaseRef":
        """Create a root ref from FIREBASE_CREDENTIALS / FIREBASE_URL."""
        if settings.FIREBASE_CREDENTIALS:
            return cls.from_service_account_file(
                settings.FIREBASE_CREDENTIALS, url=settings.FIREBASE_URL or None, **kwargs
            )
        return cls(settings.FIREBASE_URL, **kwargs)

    def _derive(self, url: str) -> "DatabaseRef":
        return DatabaseRef(
            url,
            auth=self._auth,
            params=self.params,
            watch_buffer_len=self.watch_buffer_len,
            timeout=self.timeout,
            log_http=self.log_http,
            client=self._client,
        )

    def child(self, path: str) -> "DatabaseRef":
        """Return a ref for ``path`` relative to this ref."""
        return self._derive(self._join(path))

    def root(self) -> "DatabaseRef":
        return self._derive(urlunsplit(urlsplit(self._url)._replace(path="/")))

    ref = child

    def _join(self, path: str) -> str:
        parts = urlsplit(self._url)
        return urlunsplit(parts._replace(path=_join_path(parts.path, path)))

    @property
    def url(self) -> str:
        return self._url

    @property
    def path(self) -> str:
        return urlsplit(self._url).path or "/"

    def request_url(self) -> str:
        """The REST endpoint for this ref: its URL plus ``.json``."""
        parts = urlsplit(self._url)
        path = parts.path.rstrip("/") + ".json"
        path = quote(path, safe="/.-_~!$&'()*,;=:@")
        return urlunsplit(parts._replace(path=path, query="", fragment=""))

    async def aclose(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "DatabaseRef":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"DatabaseRef({self._url!r})"

    # -- requests ----------------------------------------------------------

    def _build_request(
        self, method: str, body: bytes | None, params: Iterable[QueryParams], stream: bool = False
    ) -> httpx.Request:
        headers = {}
        if stream:
            headers["Accept"] = "text/event-stream"
        elif body is not None:
            headers["Content-Type"] = "application/json"
        return self._client.build_request(
            method,
            self.request_url(),
            params=merge_params(self.params, *params),
            content=body,
            headers=headers,
            timeout=None if stream else self.timeout,
        )

    def _log_request(self, request: httpx.Request) -> None:
        if self.log_http:
            logger.debug(
                "%s %s\n%s", request.method, request.url,
                request.content.decode("utf-8", errors="replace"),
            )

    def _log_response(self, response: httpx.Response) -> None:
        if self.log_http:
            logger.debug(
                "%d %s\n%s", response.status_code, response.reason_phrase,
                response.text,
            )

    @staticmethod
    def _encode(value: Any) -> bytes | None:
        if value is None:
            return None
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        try:
            return serverval.dumps(value)
        except (TypeError, ValueError) as e:
            raise FirebaseError(f"could not marshal json: {e}") from e

    async def do(self, op: OpType | str, value: Any = None, *params: QueryParams) -> Any:
        """Execute ``op`` on this ref, sending ``value`` as JSON.

        Returns the decoded JSON response body, or None for an empty body.
        """
        request = self._build_request(OpType(op).value, self._encode(value), params)
        self._log_request(request)
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as e:
            raise FirebaseError(f"could not execute request: {e}") from e
        self._log_response(response)

        check_server_error(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise FirebaseError(f"could not unmarshal json: {e}") from e

    async def open_stream(self, *params: QueryParams) -> httpx.Response:
        """Open a streaming GET for the ref's event stream.

        The caller owns the returned response and must close it.
        """
        request = self._build_request("GET", None, params, stream=True)
        self._log_request(request)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise FirebaseError(f"could not execute request: {e}") from e

        try:
            await acheck_server_error(response)
        except FirebaseError:
            await response.aclose()
            raise
        return response

    async def get(self, *params: QueryParams) -> Any:
        return await self.do(OpType.GET, None, *params)

    async def set(self, value: Any, *params: QueryParams) -> None:
        await self.do(OpType.SET, value, *params)

    async def push(self, value: Any, *params: QueryParams) -> str:
        """Append ``value`` as a new child, returning the generated key."""
        res = await self.do(OpType.PUSH, value, *params)
        if not isinstance(res, dict) or "name" not in res:
            raise FirebaseError(f"unexpected push response: {res!r}")
        return res["name"]

    async def update(self, value: Any, *params: QueryParams) -> None:
        await self.do(OpType.UPDATE, value, *params)

    async def remove(self, *params: QueryParams) -> None:
        await self.do(OpType.REMOVE, None, *params)

    # -- security rules ----------------------------------------------------

    def _rules_ref(self) -> "DatabaseRef":
        return self.root().child(RULES_PATH)

    async def get_rules_json(self) -> bytes:
        rules = await self._rules_ref().get()
        return json.dumps(rules, indent=2, ensure_ascii=False).encode("utf-8")

    async def set_rules(self, rules: Any) -> None:
        await self._rules_ref().set(rules)

    async def set_rules_json(self, buf: bytes | str) -> None:
        """Validate JSON-encoded rules and store them re-indented."""
        try:
            rules = json.loads(buf)
        except ValueError as e:
            raise FirebaseError(f"could not decode json: {e}") from e
        encoded = json.dumps(rules, indent=2, ensure_ascii=False).encode("utf-8")
        await self._rules_ref().set(encoded)

    # -- change streams ----------------------------------------------------

    async def watch(self, stop: asyncio.Event, *params: QueryParams) -> EventChannel[Event]:
        return await watch(self, stop, *params)

    def listen(
        self,
        stop: asyncio.Event,
        event_types: Iterable[EventType | str],
        *params: QueryParams,
    ) -> EventChannel[Event]:
        return listen(self, stop, event_types, *params)
