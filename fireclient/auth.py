"""Service account credentials and OAuth2 access tokens.

Requests to the database are authorized with an OAuth2 access token obtained
through the JWT bearer grant: an RS256 assertion signed with the service
account's private key is exchanged at the account's token URI.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any

import httpx
import jwt
from pydantic import BaseModel, ValidationError

from fireclient.config import DEFAULT_TOKEN_URI, OAUTH_SCOPES, settings
from fireclient.errors import CredentialsError, TokenError

logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

# Refresh a cached token this many seconds before it actually expires
_EXPIRY_MARGIN = 60


class ServiceAccountCredentials(BaseModel):
    """The relevant fields of a Google service account JSON key file."""

    project_id: str = ""
    client_email: str = ""
    private_key: str = ""
    token_uri: str = DEFAULT_TOKEN_URI

    @classmethod
    def from_json(cls, data: str | bytes | dict) -> "ServiceAccountCredentials":
        try:
            if not isinstance(data, dict):
                data = json.loads(data)
            creds = cls.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise CredentialsError(
                f"could not unmarshal service account credentials: {e}"
            ) from e
        if not (creds.project_id and creds.client_email and creds.private_key):
            raise CredentialsError(
                "google service account credentials missing "
                "project_id, client_email or private_key"
            )
        return creds

    @classmethod
    def from_file(cls, path: str | Path) -> "ServiceAccountCredentials":
        try:
            buf = Path(path).read_bytes()
        except OSError as e:
            raise CredentialsError(
                f"could not read google service account credentials file: {e}"
            ) from e
        return cls.from_json(buf)

    @property
    def database_url(self) -> str:
        return f"https://{self.project_id}.firebaseio.com/"


class ServiceAccountTokenSource:
    """Mints and caches access tokens for a service account.

    Concurrent callers share one in-flight refresh; the cached token is
    reused until shortly before it expires.
    """

    def __init__(
        self,
        credentials: ServiceAccountCredentials,
        scopes: list[str] | None = None,
        expiration: int | None = None,
        extra_claims: dict[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credentials = credentials
        self.scopes = list(scopes or OAUTH_SCOPES)
        self.expiration = expiration or settings.TOKEN_EXPIRATION
        self.extra_claims: dict[str, Any] = dict(extra_claims or {})
        self._transport = transport
        self._lock = asyncio.Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    def add_claim(self, name: str, value: Any) -> None:
        """Add a claim to future assertions and drop any cached token."""
        self.extra_claims[name] = value
        self._token = None

    def assertion(self, now: int | None = None) -> str:
        """Return a signed JWT-bearer assertion."""
        now = int(now if now is not None else time.time())
        claims = {
            "iss": self.credentials.client_email,
            "sub": self.credentials.client_email,
            "aud": self.credentials.token_uri,
            "scope": " ".join(self.scopes),
            "iat": now,
            "exp": now + self.expiration,
        }
        claims.update(self.extra_claims)
        try:
            return jwt.encode(claims, self.credentials.private_key, algorithm="RS256")
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise CredentialsError(
                f"could not create jwt signer for auth token source: {e}"
            ) from e

    async def token(self) -> str:
        async with self._lock:
            if self._token is None or time.monotonic() >= self._expires_at:
                await self._refresh()
            return self._token

    async def _refresh(self) -> None:
        data = {"grant_type": JWT_BEARER_GRANT, "assertion": self.assertion()}
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=settings.HTTP_TIMEOUT
            ) as client:
                resp = await client.post(self.credentials.token_uri, data=data)
        except httpx.HTTPError as e:
            raise TokenError(f"could not retrieve access token: {e}") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        if resp.status_code != 200 or "access_token" not in payload:
            detail = payload.get("error_description") or payload.get("error") or resp.text
            raise TokenError(
                f"token exchange failed: {detail} ({resp.status_code})"
            )

        expires_in = int(payload.get("expires_in", self.expiration))
        self._token = payload["access_token"]
        self._expires_at = time.monotonic() + max(expires_in - _EXPIRY_MARGIN, 0)
        logger.debug(
            "Refreshed access token for %s (expires in %ds)",
            self.credentials.client_email, expires_in,
        )


class BearerAuth(httpx.Auth):
    """httpx auth flow attaching a bearer token from a token source."""

    def __init__(self, source: ServiceAccountTokenSource):
        self.source = source

    async def async_auth_flow(self, request: httpx.Request):
        token = await self.source.token()
        request.headers["Authorization"] = f"Bearer {token}"
        yield request
