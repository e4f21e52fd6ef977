"""Firebase custom auth token generation.

Custom tokens let a trusted server sign in clients as a chosen user id. The
``claims`` value is exposed to security rules as ``auth`` and
``request.auth``.
"""

import time
from pathlib import Path
from typing import Any

import jwt

from fireclient.auth import ServiceAccountCredentials
from fireclient.config import CUSTOM_TOKEN_AUDIENCE, settings
from fireclient.errors import CredentialsError


class TokenGenerator:
    """Signs Firebase custom auth tokens with a service account key."""

    def __init__(
        self,
        private_key: str,
        service_account_email: str,
        project_id: str = "",
        expiration: int | None = None,
        issued_at: bool = True,
        not_before: bool = True,
        uid: str | None = None,
    ):
        if not private_key:
            raise CredentialsError("no private key was provided")
        if not service_account_email:
            raise CredentialsError("no service account email was provided")

        self.private_key = private_key
        self.service_account_email = service_account_email
        self.project_id = project_id
        # 0 disables the "exp" claim
        self.expiration = settings.CUSTOM_TOKEN_EXPIRATION if expiration is None else expiration
        self.issued_at = issued_at
        self.not_before = not_before
        self.uid = uid

    @classmethod
    def from_credentials(
        cls, credentials: ServiceAccountCredentials, **kwargs
    ) -> "TokenGenerator":
        return cls(
            credentials.private_key,
            credentials.client_email,
            project_id=credentials.project_id,
            **kwargs,
        )

    @classmethod
    def from_file(cls, path: str | Path, **kwargs) -> "TokenGenerator":
        return cls.from_credentials(ServiceAccountCredentials.from_file(path), **kwargs)

    def claims(
        self,
        uid: str | None = None,
        claims: Any = None,
        now: int | None = None,
    ) -> dict[str, Any]:
        """Build the token payload; ``uid`` overrides the generator's default."""
        now = int(now if now is not None else time.time())
        payload: dict[str, Any] = {
            "iss": self.service_account_email,
            "sub": self.service_account_email,
            "aud": CUSTOM_TOKEN_AUDIENCE,
        }
        if self.expiration:
            payload["exp"] = now + self.expiration
        if self.issued_at:
            payload["iat"] = now
        if self.not_before:
            payload["nbf"] = now

        uid = uid if uid is not None else self.uid
        if uid:
            payload["uid"] = uid
        if claims is not None:
            payload["claims"] = claims
        return payload

    def token(self, uid: str | None = None, claims: Any = None) -> str:
        try:
            return jwt.encode(
                self.claims(uid=uid, claims=claims),
                self.private_key,
                algorithm="RS256",
            )
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise CredentialsError(f"could not sign custom token: {e}") from e
