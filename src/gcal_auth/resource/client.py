# Client for the authorization server's Google token side channel.
# Created: 2026-10-18

from __future__ import annotations

import logging

import httpx

from gcal_auth.api.oauth2.models import UpstreamTokens

logger = logging.getLogger(__name__)


class UpstreamTokensUnavailable(Exception):
    """The authorization server refused or had no Google tokens for this user."""

    def __init__(self, error: str, description: str, status_code: int):
        super().__init__(f"{error}: {description}")
        self.error = error
        self.description = description
        self.status_code = status_code


class AuthServerClient:
    """Fetch the Google credentials behind a local access token."""

    def __init__(
        self,
        auth_server_url: str,
        timeout: float = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.auth_server_url = auth_server_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def get_upstream_tokens(self, access_token: str) -> UpstreamTokens:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.get(
                f"{self.auth_server_url}/google-tokens",
                headers={"Authorization": f"Bearer {access_token}"},
            )

        if resp.status_code != 200:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            raise UpstreamTokensUnavailable(
                body.get("error", "server_error"),
                body.get("error_description", resp.reason_phrase),
                resp.status_code,
            )

        data = resp.json()
        expiry_ms = data.get("expiry_date")
        return UpstreamTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type", "Bearer"),
            expires_at=expiry_ms / 1000 if expiry_ms else None,
        )
