# OAuth 2.1 schemas.
# Created: 2026-10-18

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ClientRegistrationRequest(BaseModel):
    """Dynamic client registration request (RFC 7591 subset)."""

    model_config = ConfigDict(extra="ignore")

    client_name: str | None = None
    redirect_uris: list[str] | None = None
    grant_types: list[str] | None = None
    response_types: list[str] | None = None


class ClientRegistrationResponse(BaseModel):
    client_id: str
    client_name: str
    redirect_uris: list[str]
    grant_types: list[str]
    response_types: list[str]
    scope: str
    token_endpoint_auth_method: str = "none"
    client_id_issued_at: int
    registration_access_token: str
    registration_client_uri: str


class TokenRequest(BaseModel):
    """Token endpoint parameters. Grant-specific checks happen in the server."""

    model_config = ConfigDict(extra="ignore")

    grant_type: str | None = None
    resource: str | None = None
    client_id: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    code_verifier: str | None = None
    refresh_token: str | None = None


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str


class RevokeRequest(BaseModel):
    """Token revocation request."""

    model_config = ConfigDict(extra="ignore")

    token: str | None = None
    token_type_hint: str | None = None


class UpstreamTokensResponse(BaseModel):
    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expiry_date: int | None = None
