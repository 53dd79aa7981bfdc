# Tests for api/oauth2/google.py
# Created: 2026-10-18

import time
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from gcal_auth.api.oauth2.google import (
    GOOGLE_AUTH_URL,
    GOOGLE_SCOPES,
    GoogleOAuthBridge,
    UpstreamError,
)


def _bridge(handler) -> GoogleOAuthBridge:
    return GoogleOAuthBridge(
        client_id="google-client",
        client_secret="google-secret",
        redirect_uri="http://localhost:3080/oauth/google/callback",
        transport=httpx.MockTransport(handler),
    )


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


# ---------------------------------------------------------------------------
# Consent URL
# ---------------------------------------------------------------------------


class TestConsentURL:
    def test_parameters(self):
        url = _bridge(_unreachable).build_consent_url("upstream-state")
        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == GOOGLE_AUTH_URL

        params = {k: v[0] for k, v in parse_qs(parts.query).items()}
        assert params["client_id"] == "google-client"
        assert params["redirect_uri"] == "http://localhost:3080/oauth/google/callback"
        assert params["response_type"] == "code"
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert params["state"] == "upstream-state"
        assert params["scope"].split() == GOOGLE_SCOPES

    def test_no_client_parameters_leak(self):
        params = parse_qs(urlsplit(_bridge(_unreachable).build_consent_url("s")).query)
        assert "code_challenge" not in params
        assert "resource" not in params


# ---------------------------------------------------------------------------
# Code exchange
# ---------------------------------------------------------------------------


class TestExchangeCode:
    async def test_success(self):
        seen = {}

        def handler(request):
            seen["form"] = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            return httpx.Response(
                200,
                json={
                    "access_token": "ya29.access",
                    "refresh_token": "1//refresh",
                    "expires_in": 3599,
                    "token_type": "Bearer",
                },
            )

        before = time.time()
        tokens = await _bridge(handler).exchange_code("google-code")

        assert seen["form"]["code"] == "google-code"
        assert seen["form"]["grant_type"] == "authorization_code"
        assert seen["form"]["client_secret"] == "google-secret"
        assert seen["form"]["redirect_uri"] == "http://localhost:3080/oauth/google/callback"
        assert tokens.access_token == "ya29.access"
        assert tokens.refresh_token == "1//refresh"
        assert before + 3599 <= tokens.expires_at <= time.time() + 3599

    async def test_missing_refresh_token_is_allowed(self):
        def handler(request):
            return httpx.Response(200, json={"access_token": "a", "expires_in": 10})

        tokens = await _bridge(handler).exchange_code("c")
        assert tokens.refresh_token is None

    async def test_http_error_wrapped(self):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(UpstreamError, match="Failed to exchange authorization code"):
            await _bridge(handler).exchange_code("bad")

    async def test_network_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        with pytest.raises(UpstreamError, match="Failed to exchange authorization code"):
            await _bridge(handler).exchange_code("c")

    async def test_malformed_body_wrapped(self):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        with pytest.raises(UpstreamError):
            await _bridge(handler).exchange_code("c")


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class TestFetchProfile:
    async def test_success(self):
        def handler(request):
            assert request.headers["authorization"] == "Bearer ya29.access"
            return httpx.Response(
                200,
                json={
                    "id": "1234567890",
                    "email": "user@example.com",
                    "name": "Test User",
                    "verified_email": True,
                },
            )

        profile = await _bridge(handler).fetch_profile("ya29.access")
        assert profile.id == "1234567890"
        assert profile.email == "user@example.com"
        assert profile.verified_email is True
        assert profile.picture is None

    async def test_failure_wrapped(self):
        def handler(request):
            return httpx.Response(401, text="unauthorized")

        with pytest.raises(UpstreamError, match="Failed to get user info"):
            await _bridge(handler).fetch_profile("expired")


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    async def test_success(self):
        def handler(request):
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["refresh_token"]
            assert form["refresh_token"] == ["1//refresh"]
            return httpx.Response(200, json={"access_token": "new", "expires_in": 1800})

        refreshed = await _bridge(handler).refresh_access_token("1//refresh")
        assert refreshed.access_token == "new"
        assert refreshed.expires_in == 1800

    async def test_failure_wrapped(self):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(UpstreamError, match="Failed to refresh access token"):
            await _bridge(handler).refresh_access_token("revoked")
