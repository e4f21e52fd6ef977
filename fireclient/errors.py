"""Exception types and server error decoding for the database client."""

import json
import logging

import httpx

logger = logging.getLogger(__name__)


class FirebaseError(Exception):
    """General Firebase client error."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"firebase: {self.message}"


class ServerError(FirebaseError):
    """Error reported by the database server in a non-2xx response."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class CredentialsError(FirebaseError):
    """Missing or unusable service account credentials."""


class TokenError(FirebaseError):
    """The OAuth2 token endpoint rejected or failed a token exchange."""


def server_error_from_body(body: bytes, status_code: int, reason: str) -> ServerError:
    """Build a ServerError from a raw error response body.

    The server reports errors as ``{"error": "..."}``; anything else is
    wrapped verbatim so the caller still sees what came back.
    """
    if not body:
        return ServerError(
            f"empty server error: {reason} ({status_code})", status_code
        )

    try:
        decoded = json.loads(body)
    except ValueError:
        decoded = None

    if isinstance(decoded, dict) and isinstance(decoded.get("error"), str):
        return ServerError(decoded["error"], status_code)

    text = body.decode("utf-8", errors="replace")
    return ServerError(f"unknown server error: {text} ({status_code})", status_code)


def check_server_error(response: httpx.Response) -> None:
    """Raise a ServerError if a fully read response is not 2xx."""
    if response.is_success:
        return
    raise server_error_from_body(
        response.content, response.status_code, response.reason_phrase
    )


async def acheck_server_error(response: httpx.Response) -> None:
    """Streaming variant of check_server_error; reads the error body first."""
    if response.is_success:
        return
    try:
        body = await response.aread()
    except httpx.HTTPError as e:
        raise FirebaseError(f"unable to read server error: {e}") from e
    logger.debug("Server error %d: %r", response.status_code, body[:200])
    raise server_error_from_body(body, response.status_code, response.reason_phrase)
