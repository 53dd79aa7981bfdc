# OAuth 2.1 authorization server bridging Google sign-in.
# Created: 2026-10-18
#
# Flow: /authorize validates the client and parks the request under a fresh
# upstream state, the user consents at Google, the Google callback turns that
# into our own single-use authorization code, and /token trades the code
# (plus PKCE verifier) for an RS256 access token and an opaque refresh token.
# Public clients only; PKCE S256 is the sole client authentication.

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from gcal_auth.api.errors import OAuthError, bearer_challenge
from gcal_auth.api.oauth2.crypto import (
    ACCESS_TOKEN_TTL_SECONDS,
    CryptoProvider,
    TokenError,
    TokenExpired,
)
from gcal_auth.api.oauth2.google import GoogleOAuthBridge, UpstreamError
from gcal_auth.api.oauth2.models import (
    DEFAULT_REQUEST_SCOPE,
    SUPPORTED_GRANT_TYPES,
    SUPPORTED_RESPONSE_TYPES,
    SUPPORTED_SCOPES,
    AuthorizationCode,
    AuthorizationRequest,
    RefreshToken,
    UpstreamTokens,
)
from gcal_auth.api.oauth2.storage import CredentialStore, InMemoryStorage
from gcal_auth.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Refresh a cached Google token this many seconds before it actually expires.
UPSTREAM_EXPIRY_SKEW = 60

# Allowed code_challenge characters and length (RFC 7636, section 4.2).
_CODE_CHALLENGE_RE = re.compile(r"[A-Za-z0-9\-._~]{43,128}")


def _is_absolute_uri(uri: str) -> bool:
    parts = urlsplit(uri)
    return bool(parts.scheme) and bool(parts.netloc or parts.path) and not parts.fragment


def _append_query(uri: str, params: dict[str, str]) -> str:
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class AuthorizationServer:
    """Protocol engine. Every failure is raised as ``OAuthError``."""

    def __init__(
        self,
        settings: Settings,
        storage: CredentialStore | None = None,
        crypto: CryptoProvider | None = None,
        upstream: GoogleOAuthBridge | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.settings = settings
        self._clock = clock or time.time
        self.crypto = crypto or CryptoProvider(clock=self._clock)
        self.storage = storage or InMemoryStorage(
            clock=self._clock, id_factory=self.crypto.client_id
        )
        self.upstream = upstream or GoogleOAuthBridge(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
        )

    @property
    def issuer(self) -> str:
        return self.settings.issuer

    @property
    def resource_id(self) -> str:
        return self.settings.resource_id

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def metadata(self) -> dict[str, Any]:
        """RFC 8414 authorization server metadata."""
        return {
            "issuer": self.issuer,
            "authorization_endpoint": f"{self.issuer}/authorize",
            "token_endpoint": f"{self.issuer}/token",
            "registration_endpoint": f"{self.issuer}/register",
            "revocation_endpoint": f"{self.issuer}/revoke",
            "jwks_uri": f"{self.issuer}/.well-known/jwks.json",
            "code_challenge_methods_supported": ["S256"],
            "scopes_supported": list(SUPPORTED_SCOPES),
            "response_types_supported": list(SUPPORTED_RESPONSE_TYPES),
            "grant_types_supported": list(SUPPORTED_GRANT_TYPES),
            "token_endpoint_auth_methods_supported": ["none"],
            "revocation_endpoint_auth_methods_supported": ["none"],
            "subject_types_supported": ["public"],
        }

    def jwks(self) -> dict[str, Any]:
        return self.crypto.jwks()

    # ------------------------------------------------------------------
    # Dynamic client registration (RFC 7591)
    # ------------------------------------------------------------------

    def register_client(
        self,
        client_name: str | None,
        redirect_uris: list[str] | None,
        grant_types: list[str] | None = None,
        response_types: list[str] | None = None,
    ) -> dict[str, Any]:
        if not client_name or not redirect_uris:
            raise OAuthError(
                "invalid_request", "Missing required fields: client_name, redirect_uris"
            )
        bad = [u for u in redirect_uris if not _is_absolute_uri(u)]
        if bad:
            raise OAuthError("invalid_request", f"redirect_uris must be absolute URIs: {bad[0]}")

        grant_types = grant_types or list(SUPPORTED_GRANT_TYPES)
        response_types = response_types or list(SUPPORTED_RESPONSE_TYPES)
        if not set(grant_types) <= set(SUPPORTED_GRANT_TYPES):
            raise OAuthError("invalid_request", "Unsupported grant_types")
        if not set(response_types) <= set(SUPPORTED_RESPONSE_TYPES):
            raise OAuthError("invalid_request", "Unsupported response_types")

        client = self.storage.register_client(
            client_name=client_name,
            redirect_uris=redirect_uris,
            grant_types=grant_types,
            response_types=response_types,
            scope=" ".join(SUPPORTED_SCOPES),
        )
        logger.info("Registered client %s (%s)", client.client_id, client.client_name)
        return {
            "client_id": client.client_id,
            "client_name": client.client_name,
            "redirect_uris": client.redirect_uris,
            "grant_types": client.grant_types,
            "response_types": client.response_types,
            "scope": client.scope,
            "token_endpoint_auth_method": "none",
            "client_id_issued_at": int(client.created_at.timestamp()),
            # Registration management (RFC 7592) is not implemented.
            "registration_access_token": "not_implemented",
            "registration_client_uri": f"{self.issuer}/client/{client.client_id}",
        }

    # ------------------------------------------------------------------
    # /authorize
    # ------------------------------------------------------------------

    def begin_authorization(
        self,
        client_id: str | None,
        response_type: str | None,
        redirect_uri: str | None,
        state: str | None,
        code_challenge: str | None,
        code_challenge_method: str | None,
        resource: str | None,
        scope: str | None = None,
    ) -> str:
        """Validate an authorization request and return the Google consent URL."""
        if not all((client_id, response_type, redirect_uri, state, code_challenge, resource)):
            raise OAuthError("invalid_request", "Missing required parameters")

        if response_type != "code":
            raise OAuthError(
                "unsupported_response_type", "Only authorization_code flow is supported"
            )

        if code_challenge_method != "S256":
            raise OAuthError("invalid_request", "Only S256 code challenge method is supported")

        if not _CODE_CHALLENGE_RE.fullmatch(code_challenge):
            raise OAuthError("invalid_request", "Malformed code_challenge")

        if resource != self.resource_id:
            raise OAuthError(
                "invalid_request", f"Invalid resource. Expected: {self.resource_id}"
            )

        client = self.storage.get_client(client_id)
        if client is None:
            raise OAuthError("invalid_client", "Invalid client_id")

        if redirect_uri not in client.redirect_uris:
            raise OAuthError("invalid_request", "Invalid redirect_uri")

        upstream_state = self.crypto.random_token()
        consent_url = self.upstream.build_consent_url(upstream_state)
        self.storage.store_authorization_request(
            upstream_state,
            AuthorizationRequest(
                client_id=client_id,
                redirect_uri=redirect_uri,
                scope=scope or DEFAULT_REQUEST_SCOPE,
                state=state,
                code_challenge=code_challenge,
                code_challenge_method="S256",
                resource=resource,
            ),
        )
        logger.info("Authorization started for client %s; redirecting to Google", client_id)
        return consent_url

    # ------------------------------------------------------------------
    # Google callback
    # ------------------------------------------------------------------

    async def complete_upstream_callback(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
    ) -> str:
        """Finish the Google leg and return the client redirect URL."""
        if error:
            raise OAuthError("access_denied", f"Google OAuth error: {error}")
        if not code:
            raise OAuthError("invalid_request", "No authorization code received")

        # Consumed before any network call so a replayed callback cannot mint a second code.
        # Keep this ahead of the Google exchange (see "State lookup vs. upstream exchange"
        # in DESIGN.md).
        request = self.storage.consume_authorization_request(state) if state else None
        if request is None:
            raise OAuthError("invalid_request", "No authorization request found")

        try:
            tokens = await self.upstream.exchange_code(code)
            profile = await self.upstream.fetch_profile(tokens.access_token)
        except UpstreamError as exc:
            raise OAuthError("server_error", str(exc), 500) from exc

        self.storage.store_upstream_tokens(profile.id, tokens)

        auth_code = self.crypto.random_token()
        self.storage.store_authorization_code(
            AuthorizationCode.from_request(
                auth_code, request, user_id=profile.id, auth_time=self._clock()
            )
        )
        logger.info(
            "Issued authorization code to client %s for user %s", request.client_id, profile.id
        )
        return _append_query(request.redirect_uri, {"code": auth_code, "state": request.state})

    # ------------------------------------------------------------------
    # /token
    # ------------------------------------------------------------------

    def exchange_token(
        self,
        grant_type: str | None,
        resource: str | None,
        client_id: str | None = None,
        code: str | None = None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
        refresh_token: str | None = None,
    ) -> dict[str, Any]:
        if resource != self.resource_id:
            raise OAuthError(
                "invalid_request", f"Invalid resource. Expected: {self.resource_id}"
            )

        if grant_type == "authorization_code":
            return self._authorization_code_grant(code, client_id, redirect_uri, code_verifier)
        if grant_type == "refresh_token":
            return self._refresh_token_grant(refresh_token, client_id)
        if not grant_type:
            raise OAuthError("invalid_request", "Missing grant_type")
        raise OAuthError(
            "unsupported_grant_type",
            "Only authorization_code and refresh_token grants are supported",
        )

    def _authorization_code_grant(
        self,
        code: str | None,
        client_id: str | None,
        redirect_uri: str | None,
        code_verifier: str | None,
    ) -> dict[str, Any]:
        if not code or not client_id or not code_verifier:
            raise OAuthError("invalid_request", "Missing required parameters")

        auth_code = self.storage.consume_authorization_code(code)
        if auth_code is None:
            raise OAuthError("invalid_grant", "Invalid or expired authorization code")

        if auth_code.client_id != client_id:
            raise OAuthError("invalid_grant", "Client ID mismatch")

        if auth_code.redirect_uri != redirect_uri:
            raise OAuthError("invalid_grant", "Redirect URI mismatch")

        if not self.crypto.pkce_verify(code_verifier, auth_code.code_challenge):
            raise OAuthError("invalid_grant", "Invalid code verifier")

        access_token = self._mint_access_token(
            auth_code.user_id, client_id, auth_code.scope, auth_code.resource, auth_code.auth_time
        )
        refresh_token = self._issue_refresh_token(
            auth_code.user_id, client_id, auth_code.scope, auth_code.auth_time
        )
        logger.info("Issued tokens to client %s for user %s", client_id, auth_code.user_id)
        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": ACCESS_TOKEN_TTL_SECONDS,
            "refresh_token": refresh_token,
            "scope": auth_code.scope,
        }

    def _refresh_token_grant(
        self, refresh_token: str | None, client_id: str | None
    ) -> dict[str, Any]:
        if not refresh_token or not client_id:
            raise OAuthError("invalid_request", "Missing required parameters")

        record = self.storage.get_refresh_token(refresh_token)
        if record is None:
            raise OAuthError("invalid_grant", "Invalid or expired refresh token")

        if record.client_id != client_id:
            raise OAuthError("invalid_grant", "Client ID mismatch")

        result: dict[str, Any] = {
            "access_token": self._mint_access_token(
                record.user_id, client_id, record.scope, self.resource_id, record.auth_time
            ),
            "token_type": "Bearer",
            "expires_in": ACCESS_TOKEN_TTL_SECONDS,
            "scope": record.scope,
        }
        if self.settings.rotate_refresh_tokens:
            self.storage.revoke_refresh_token(refresh_token)
            result["refresh_token"] = self._issue_refresh_token(
                record.user_id, client_id, record.scope, record.auth_time
            )
        logger.info("Refreshed access token for client %s", client_id)
        return result

    def _mint_access_token(
        self, user_id: str, client_id: str, scope: str, resource: str, auth_time: float
    ) -> str:
        return self.crypto.sign(
            {
                "iss": self.issuer,
                "sub": user_id,
                "aud": resource,
                "scope": scope,
                "client_id": client_id,
                "auth_time": int(auth_time),
            }
        )

    def _issue_refresh_token(
        self, user_id: str, client_id: str, scope: str, auth_time: float
    ) -> str:
        token = self.crypto.random_token()
        self.storage.store_refresh_token(
            RefreshToken(
                token=token,
                user_id=user_id,
                client_id=client_id,
                scope=scope,
                auth_time=auth_time,
            )
        )
        return token

    # ------------------------------------------------------------------
    # Revocation (RFC 7009)
    # ------------------------------------------------------------------

    def revoke(self, token: str | None) -> None:
        """Revoke a refresh token. Unknown tokens are not an error."""
        if not token:
            raise OAuthError("invalid_request", "Missing token")
        if self.storage.revoke_refresh_token(token):
            logger.info("Revoked refresh token")

    # ------------------------------------------------------------------
    # Google token side channel
    # ------------------------------------------------------------------

    def verify_bearer(self, authorization: str | None) -> dict[str, Any]:
        """Verify an ``Authorization: Bearer`` header issued by this server."""
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise OAuthError(
                "invalid_token",
                "Missing or invalid authorization header",
                401,
                bearer_challenge("invalid_token", "Missing bearer token"),
            )
        try:
            return self.crypto.verify(
                token.strip(), audience=self.resource_id, issuer=self.issuer
            )
        except TokenExpired as exc:
            raise OAuthError(
                "invalid_token",
                "Token expired",
                401,
                bearer_challenge("invalid_token", "Token expired"),
            ) from exc
        except TokenError as exc:
            raise OAuthError(
                "invalid_token",
                "Invalid JWT token",
                401,
                bearer_challenge("invalid_token", "Invalid JWT token"),
            ) from exc

    async def upstream_tokens_for(self, authorization: str | None) -> dict[str, Any]:
        """Return the cached Google tokens for the bearer token's subject."""
        claims = self.verify_bearer(authorization)
        user_id = claims["sub"]

        tokens = self.storage.get_upstream_tokens(user_id)
        if tokens is None:
            raise OAuthError("not_found", "No Google tokens found for user", 404)

        if self._upstream_expired(tokens) and tokens.refresh_token:
            try:
                refreshed = await self.upstream.refresh_access_token(tokens.refresh_token)
            except UpstreamError as exc:
                logger.warning("Serving stale Google token for %s: %s", user_id, exc)
            else:
                tokens = UpstreamTokens(
                    access_token=refreshed.access_token,
                    refresh_token=tokens.refresh_token,
                    token_type=tokens.token_type,
                    expires_at=self._clock() + refreshed.expires_in,
                )
                self.storage.store_upstream_tokens(user_id, tokens)
                logger.info("Refreshed cached Google token for %s", user_id)

        return tokens.to_wire()

    def _upstream_expired(self, tokens: UpstreamTokens) -> bool:
        if tokens.expires_at is None:
            return False
        return tokens.expires_at <= self._clock() + UPSTREAM_EXPIRY_SKEW

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_expired(self) -> int:
        return self.storage.sweep_expired()


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        settings = get_settings()
        if not settings.google_client_id or not settings.google_client_secret:
            logger.warning("Google OAuth credentials are not configured; sign-in will fail")
        _server = AuthorizationServer(settings)
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None
