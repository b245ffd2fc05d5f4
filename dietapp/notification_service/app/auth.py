"""Caller identity and cron shared-secret checks.

Sessions are issued elsewhere; this service only needs to map a bearer token
to a ``Principal``.
"""

from __future__ import annotations

import hmac
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal, Protocol

Role = Literal["client", "dietitian"]


@dataclass(frozen=True, slots=True)
class Principal:
    user_id: int
    role: Role = "client"

    @property
    def is_dietitian(self) -> bool:
        return self.role == "dietitian"


class Authenticator(Protocol):
    async def authenticate(self, token: str) -> Principal | None: ...


class StaticTokenAuthenticator:
    """Token table authenticator used for local runs and tests."""

    def __init__(self, tokens: Mapping[str, Principal] | None = None) -> None:
        self._tokens = dict(tokens or {})

    async def authenticate(self, token: str) -> Principal | None:
        return self._tokens.get(token)


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def verify_cron_secret(expected: str, *, authorization: str | None, query_secret: str | None) -> bool:
    """Constant-time comparison against the header or ``secret`` query value."""

    expected_bytes = expected.encode()
    for candidate in (bearer_token(authorization), query_secret):
        if candidate is not None and hmac.compare_digest(candidate.encode(), expected_bytes):
            return True
    return False
