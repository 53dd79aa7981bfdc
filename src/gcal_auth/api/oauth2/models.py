# OAuth 2.1 data models.
# Created: 2026-10-18

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

# Scopes granted to every dynamically registered client.
SUPPORTED_SCOPES = [
    "calendar.read",
    "calendar.write",
    "calendar.events.read",
    "calendar.events.write",
]
DEFAULT_REQUEST_SCOPE = "calendar.read calendar.write"

SUPPORTED_GRANT_TYPES = ["authorization_code", "refresh_token"]
SUPPORTED_RESPONSE_TYPES = ["code"]


@dataclass
class ClientRegistration:
    """Dynamically registered public client."""

    client_id: str
    client_name: str
    redirect_uris: list[str] = field(default_factory=list)
    grant_types: list[str] = field(default_factory=lambda: list(SUPPORTED_GRANT_TYPES))
    response_types: list[str] = field(default_factory=lambda: list(SUPPORTED_RESPONSE_TYPES))
    scope: str = " ".join(SUPPORTED_SCOPES)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class AuthorizationRequest:
    """Pending /authorize call, keyed by the upstream-correlation state."""

    client_id: str
    redirect_uri: str
    scope: str
    state: str  # client-supplied, echoed back on the final redirect
    code_challenge: str
    resource: str
    code_challenge_method: str = "S256"
    expires_at: float = 0.0


@dataclass
class AuthorizationCode:
    """Code handed to the client after upstream consent. Single use."""

    code: str
    client_id: str
    redirect_uri: str
    scope: str
    state: str
    code_challenge: str
    resource: str
    user_id: str
    code_challenge_method: str = "S256"
    auth_time: float = 0.0  # when the user finished upstream sign-in
    expires_at: float = 0.0

    @classmethod
    def from_request(
        cls, code: str, request: AuthorizationRequest, user_id: str, auth_time: float
    ) -> AuthorizationCode:
        return cls(
            code=code,
            client_id=request.client_id,
            redirect_uri=request.redirect_uri,
            scope=request.scope,
            state=request.state,
            code_challenge=request.code_challenge,
            code_challenge_method=request.code_challenge_method,
            resource=request.resource,
            user_id=user_id,
            auth_time=auth_time,
        )


@dataclass
class RefreshToken:
    """Opaque refresh token bound to the client that obtained it."""

    token: str
    user_id: str
    client_id: str
    scope: str
    auth_time: float = 0.0
    issued_at: float = 0.0
    expires_at: float = 0.0


@dataclass
class UpstreamTokens:
    """Google credentials cached per user."""

    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_at: float | None = None  # Unix timestamp

    def to_wire(self) -> dict:
        """Response shape of the side-channel endpoint (expiry in ms, Google style)."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "Bearer",
            "expiry_date": int(self.expires_at * 1000) if self.expires_at else None,
        }


@dataclass
class UpstreamProfile:
    """Subset of the Google userinfo payload."""

    id: str
    email: str
    name: str
    picture: str | None = None
    verified_email: bool = False
