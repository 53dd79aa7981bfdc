# Google OAuth 2.0 bridge.
# Created: 2026-10-18
#
# Every network call opens its own httpx client so no credentials or
# connection state are shared between concurrent requests.

from __future__ import annotations

import logging
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any

import httpx

from gcal_auth.api.oauth2.models import UpstreamProfile, UpstreamTokens

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]


class UpstreamError(Exception):
    """A call to Google failed. The message names the call."""


@dataclass
class UpstreamRefresh:
    access_token: str
    expires_in: int


class GoogleOAuthBridge:
    """Stateless wrapper around Google's OAuth 2.0 endpoints.

    Args:
        client_id: Google OAuth client ID.
        client_secret: Google OAuth client secret.
        redirect_uri: The callback registered with Google.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: float = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def build_consent_url(self, state: str) -> str:
        """Google consent URL that always yields a refresh token."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urllib.parse.urlencode(params)}"

    async def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        async with self._client() as client:
            resp = await client.post(GOOGLE_TOKEN_URL, data=data)
            resp.raise_for_status()
            return resp.json()

    async def exchange_code(self, code: str) -> UpstreamTokens:
        """Exchange a Google authorization code for tokens."""
        try:
            data = await self._post_token(
                {
                    "code": code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                }
            )
            expires_in = data.get("expires_in")
            return UpstreamTokens(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token"),
                token_type=data.get("token_type", "Bearer"),
                expires_at=time.time() + int(expires_in) if expires_in else None,
            )
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error("Google token exchange failed: %s", exc)
            raise UpstreamError(f"Failed to exchange authorization code: {exc}") from exc

    async def fetch_profile(self, access_token: str) -> UpstreamProfile:
        """Fetch the signed-in user's Google profile."""
        try:
            async with self._client() as client:
                resp = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                resp.raise_for_status()
                data = resp.json()
            return UpstreamProfile(
                id=str(data["id"]),
                email=data.get("email", ""),
                name=data.get("name", ""),
                picture=data.get("picture"),
                verified_email=bool(data.get("verified_email", False)),
            )
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error("Google userinfo request failed: %s", exc)
            raise UpstreamError(f"Failed to get user info: {exc}") from exc

    async def refresh_access_token(self, refresh_token: str) -> UpstreamRefresh:
        """Use a Google refresh token to mint a new Google access token."""
        try:
            data = await self._post_token(
                {
                    "refresh_token": refresh_token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "refresh_token",
                }
            )
            return UpstreamRefresh(
                access_token=data["access_token"],
                expires_in=int(data.get("expires_in", 3600)),
            )
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.warning("Google token refresh failed: %s", exc)
            raise UpstreamError(f"Failed to refresh access token: {exc}") from exc
