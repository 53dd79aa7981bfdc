# Resource-side bearer token validation.
# Created: 2026-10-18
#
# Used by the calendar MCP server in front of every tool call. It only ever
# verifies tokens: the signing key comes from the authorization server's JWKS,
# never from a shared secret, and expired tokens are rejected rather than
# refreshed (that is the client's job).

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import httpx
import jwt

logger = logging.getLogger(__name__)

# Scope each calendar tool needs. Unknown operations need no scope beyond a valid token.
OPERATION_SCOPES: dict[str, tuple[str, ...]] = {
    "list_calendars": ("calendar.read",),
    "get_calendar": ("calendar.read",),
    "create_calendar": ("calendar.write",),
    "delete_calendar": ("calendar.write",),
    "manage_calendars": ("calendar.write",),
    "list_events": ("calendar.events.read",),
    "get_event": ("calendar.events.read",),
    "find_events_by_name": ("calendar.events.read",),
    "create_event": ("calendar.events.write",),
    "create_events": ("calendar.events.write",),
    "create_event_now": ("calendar.events.write",),
    "update_event": ("calendar.events.write",),
    "update_events": ("calendar.events.write",),
    "delete_event": ("calendar.events.write",),
    "delete_event_by_id": ("calendar.events.write",),
    "delete_event_by_name": ("calendar.events.write",),
}


def scopes_for(operation: str) -> tuple[str, ...]:
    return OPERATION_SCOPES.get(operation, ())


class TokenValidationError(Exception):
    """Bearer token rejected. ``error`` is an RFC 6750 error code."""

    def __init__(self, error: str, description: str):
        super().__init__(f"{error}: {description}")
        self.error = error
        self.description = description

    @property
    def status_code(self) -> int:
        return 403 if self.error == "insufficient_scope" else 401


@dataclass(frozen=True)
class AccessClaims:
    """Verified access-token claims."""

    sub: str
    aud: str
    iss: str
    scope: str
    client_id: str
    exp: int
    iat: int
    auth_time: int | None = None

    @property
    def scopes(self) -> set[str]:
        return set(self.scope.split())

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> AccessClaims:
        aud = claims.get("aud", "")
        if isinstance(aud, list):
            aud = aud[0] if aud else ""
        return cls(
            sub=claims["sub"],
            aud=aud,
            iss=claims.get("iss", ""),
            scope=claims.get("scope", ""),
            client_id=claims.get("client_id", ""),
            exp=int(claims["exp"]),
            iat=int(claims["iat"]),
            auth_time=claims.get("auth_time"),
        )


class TokenValidator:
    """Verify RS256 access tokens against a remote JWKS.

    Args:
        jwks_url: The authorization server's ``jwks_uri``.
        resource_id: This resource server's identifier; tokens must carry it as ``aud``.
        issuer: Expected ``iss``; skipped when None.
        cache_ttl: Seconds to reuse a fetched key set.
        min_refetch_interval: Minimum seconds between fetches triggered by an unknown ``kid``.
    """

    def __init__(
        self,
        jwks_url: str,
        resource_id: str,
        issuer: str | None = None,
        cache_ttl: float = 300,
        min_refetch_interval: float = 30,
        clock: Callable[[], float] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.jwks_url = jwks_url
        self.resource_id = resource_id
        self.issuer = issuer
        self.cache_ttl = cache_ttl
        self.min_refetch_interval = min_refetch_interval
        self._clock = clock or time.time
        self._transport = transport
        self._keys: dict[str, Any] = {}
        self._fetched_at: float | None = None
        self._fetch_lock = asyncio.Lock()

    async def _fetch_jwks(self) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
            resp = await client.get(self.jwks_url)
            resp.raise_for_status()
            return resp.json()

    async def _refresh_keys(self) -> None:
        async with self._fetch_lock:
            try:
                data = await self._fetch_jwks()
                key_set = jwt.PyJWKSet.from_dict(data)
            except (httpx.HTTPError, ValueError, jwt.PyJWKSetError) as exc:
                logger.warning("Could not load JWKS from %s: %s", self.jwks_url, exc)
                raise TokenValidationError("invalid_token", "Signing keys unavailable") from exc
            self._keys = {k.key_id or "": k.key for k in key_set.keys}
            self._fetched_at = self._clock()
            logger.debug("Loaded %d signing key(s) from %s", len(self._keys), self.jwks_url)

    def _cache_fresh(self) -> bool:
        return self._fetched_at is not None and self._clock() - self._fetched_at < self.cache_ttl

    def _refetch_allowed(self) -> bool:
        return (
            self._fetched_at is None
            or self._clock() - self._fetched_at >= self.min_refetch_interval
        )

    async def _signing_key(self, kid: str) -> Any:
        if not self._cache_fresh():
            await self._refresh_keys()
        key = self._keys.get(kid)
        if key is None and self._refetch_allowed():
            # Unknown kid: the server may have restarted with a new key pair.
            await self._refresh_keys()
            key = self._keys.get(kid)
        if key is None:
            raise TokenValidationError("invalid_token", "Unknown signing key")
        return key

    async def validate(self, token: str, required_scopes: Iterable[str] = ()) -> AccessClaims:
        """Return verified claims or raise ``TokenValidationError``."""
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as exc:
            raise TokenValidationError("invalid_token", "Malformed token") from exc

        key = await self._signing_key(header.get("kid", ""))
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                audience=self.resource_id,
                issuer=self.issuer,
                options={"verify_exp": False, "require": ["exp", "iat", "sub", "aud"]},
            )
        except jwt.InvalidAudienceError as exc:
            raise TokenValidationError("invalid_token", "Token audience mismatch") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenValidationError("invalid_token", "Invalid token") from exc

        if self._clock() >= claims["exp"]:
            raise TokenValidationError("invalid_token", "Token expired")

        access = AccessClaims.from_claims(claims)
        missing = set(required_scopes) - access.scopes
        if missing:
            raise TokenValidationError(
                "insufficient_scope", f"Missing scope: {' '.join(sorted(missing))}"
            )
        return access

    async def validate_for(self, token: str, operation: str) -> AccessClaims:
        """Validate *token* for a named calendar tool."""
        return await self.validate(token, scopes_for(operation))
