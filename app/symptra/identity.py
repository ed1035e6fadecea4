"""Bearer-token identity verification against Firebase (Identity Toolkit)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from symptra.config import Settings

IDENTITY_LOOKUP_URL = "https://identitytoolkit.googleapis.com/v1/accounts:lookup"
ANONYMOUS_UID = "anonymous"


class InvalidToken(Exception):
    """The credential is missing, malformed, expired or revoked."""


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str | None = None


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> Identity: ...


def bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer ") :].strip()
    return token or None


class FirebaseIdentityVerifier:
    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    async def verify(self, token: str) -> Identity:
        if not self._settings.firebase_api_key:
            raise InvalidToken("identity provider not configured")

        async with httpx.AsyncClient(
            timeout=self._settings.request_timeout_sec,
            transport=self._transport,
        ) as client:
            try:
                response = await client.post(
                    IDENTITY_LOOKUP_URL,
                    params={"key": self._settings.firebase_api_key},
                    json={"idToken": token},
                )
            except httpx.HTTPError as exc:
                raise InvalidToken(f"identity lookup failed: {type(exc).__name__}") from exc

        if response.status_code != 200:
            raise InvalidToken(f"identity lookup rejected token (status={response.status_code})")

        users = response.json().get("users") or []
        if not users or not users[0].get("localId"):
            raise InvalidToken("token does not resolve to a user")
        user = users[0]
        return Identity(uid=str(user["localId"]), email=user.get("email"))
