# OAuth 2.1 credential storage.
# Created: 2026-10-18
#
# Process-lifetime, in-memory storage for every piece of ephemeral protocol
# state. Nothing survives a restart. All reads enforce expiry; the periodic
# sweep only bounds memory.

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Protocol

from gcal_auth.api.oauth2.models import (
    AuthorizationCode,
    AuthorizationRequest,
    ClientRegistration,
    RefreshToken,
    UpstreamTokens,
)

logger = logging.getLogger(__name__)

AUTHORIZATION_REQUEST_TTL = 10 * 60
AUTHORIZATION_CODE_TTL = 10 * 60
REFRESH_TOKEN_TTL = 24 * 60 * 60


class CredentialStore(Protocol):
    """Storage contract the authorization server depends on.

    Any backend (in-memory, Redis, SQL) must keep ``consume_*`` atomic:
    at most one caller ever receives a given record.
    """

    def register_client(
        self,
        client_name: str,
        redirect_uris: list[str],
        grant_types: list[str],
        response_types: list[str],
        scope: str,
    ) -> ClientRegistration: ...

    def get_client(self, client_id: str) -> ClientRegistration | None: ...

    def store_authorization_request(self, key: str, request: AuthorizationRequest) -> None: ...

    def consume_authorization_request(self, key: str) -> AuthorizationRequest | None: ...

    def store_authorization_code(self, code: AuthorizationCode) -> None: ...

    def consume_authorization_code(self, code: str) -> AuthorizationCode | None: ...

    def store_refresh_token(self, token: RefreshToken) -> None: ...

    def get_refresh_token(self, token: str) -> RefreshToken | None: ...

    def revoke_refresh_token(self, token: str) -> bool: ...

    def store_upstream_tokens(self, user_id: str, tokens: UpstreamTokens) -> None: ...

    def get_upstream_tokens(self, user_id: str) -> UpstreamTokens | None: ...

    def sweep_expired(self) -> int: ...


class InMemoryStorage:
    """Thread-safe in-memory ``CredentialStore``.

    A single lock guards every map. Critical sections are plain dict
    operations, so no network call ever happens while it is held.
    """

    def __init__(
        self,
        clock: Callable[[], float] | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self._clock = clock or time.time
        self._id_factory = id_factory or (lambda: secrets.token_hex(16))
        self._lock = threading.Lock()
        self._clients: dict[str, ClientRegistration] = {}
        self._requests: dict[str, AuthorizationRequest] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._refresh_tokens: dict[str, RefreshToken] = {}
        self._upstream: dict[str, UpstreamTokens] = {}

    # -- clients -------------------------------------------------------

    def register_client(
        self,
        client_name: str,
        redirect_uris: list[str],
        grant_types: list[str],
        response_types: list[str],
        scope: str,
    ) -> ClientRegistration:
        with self._lock:
            client_id = self._id_factory()
            while client_id in self._clients:
                client_id = self._id_factory()
            client = ClientRegistration(
                client_id=client_id,
                client_name=client_name,
                redirect_uris=list(redirect_uris),
                grant_types=list(grant_types),
                response_types=list(response_types),
                scope=scope,
            )
            self._clients[client_id] = client
        return client

    def get_client(self, client_id: str) -> ClientRegistration | None:
        with self._lock:
            return self._clients.get(client_id)

    # -- authorization requests ----------------------------------------

    def store_authorization_request(self, key: str, request: AuthorizationRequest) -> None:
        expires_at = self._clock() + AUTHORIZATION_REQUEST_TTL
        with self._lock:
            self._requests[key] = replace(request, expires_at=expires_at)

    def consume_authorization_request(self, key: str) -> AuthorizationRequest | None:
        with self._lock:
            request = self._requests.pop(key, None)
        if request is None or request.expires_at <= self._clock():
            return None
        return request

    # -- authorization codes -------------------------------------------

    def store_authorization_code(self, code: AuthorizationCode) -> None:
        expires_at = self._clock() + AUTHORIZATION_CODE_TTL
        with self._lock:
            self._codes[code.code] = replace(code, expires_at=expires_at)

    def consume_authorization_code(self, code: str) -> AuthorizationCode | None:
        # The only read path for codes: get and delete in one step.
        with self._lock:
            auth_code = self._codes.pop(code, None)
        if auth_code is None or auth_code.expires_at <= self._clock():
            return None
        return auth_code

    # -- refresh tokens ------------------------------------------------

    def store_refresh_token(self, token: RefreshToken) -> None:
        now = self._clock()
        with self._lock:
            self._refresh_tokens[token.token] = replace(
                token, issued_at=now, expires_at=now + REFRESH_TOKEN_TTL
            )

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        now = self._clock()
        with self._lock:
            record = self._refresh_tokens.get(token)
            if record is None:
                return None
            if record.expires_at <= now:
                del self._refresh_tokens[token]
                return None
            return record

    def revoke_refresh_token(self, token: str) -> bool:
        with self._lock:
            return self._refresh_tokens.pop(token, None) is not None

    # -- upstream tokens -----------------------------------------------

    def store_upstream_tokens(self, user_id: str, tokens: UpstreamTokens) -> None:
        with self._lock:
            self._upstream[user_id] = tokens

    def get_upstream_tokens(self, user_id: str) -> UpstreamTokens | None:
        with self._lock:
            return self._upstream.get(user_id)

    # -- maintenance ---------------------------------------------------

    def sweep_expired(self) -> int:
        """Drop expired requests, codes and refresh tokens. Returns the count removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            for table in (self._requests, self._codes, self._refresh_tokens):
                expired = [k for k, v in table.items() if v.expires_at <= now]
                for k in expired:
                    del table[k]
                removed += len(expired)
        if removed:
            logger.debug("Swept %d expired OAuth entries", removed)
        return removed
