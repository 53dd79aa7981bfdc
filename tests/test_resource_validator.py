# Tests for the resource-side token validator, FastAPI dependency and side-channel client.
# Created: 2026-10-18

import time
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from gcal_auth.api.errors import install_exception_handlers
from gcal_auth.api.oauth2.crypto import CryptoProvider
from gcal_auth.resource.client import AuthServerClient, UpstreamTokensUnavailable
from gcal_auth.resource.deps import require_bearer
from gcal_auth.resource.validator import (
    AccessClaims,
    TokenValidationError,
    TokenValidator,
    scopes_for,
)

ISSUER = "http://localhost:3080"
RESOURCE = "http://localhost:3002"


class FakeClock:
    def __init__(self):
        self.now = time.time() - 3 * 86400

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def crypto(clock):
    return CryptoProvider(clock=clock)


@pytest.fixture
def validator(crypto, clock):
    v = TokenValidator(f"{ISSUER}/.well-known/jwks.json", RESOURCE, issuer=ISSUER, clock=clock)
    v._fetch_jwks = AsyncMock(side_effect=lambda: crypto.jwks())
    return v


def _token(crypto, scope="calendar.read calendar.write", **overrides):
    claims = {
        "iss": ISSUER,
        "sub": "google-user-1",
        "aud": RESOURCE,
        "scope": scope,
        "client_id": "client-1",
        "auth_time": 1700000000,
    }
    claims.update(overrides)
    return crypto.sign(claims)


# ---------------------------------------------------------------------------
# TokenValidator
# ---------------------------------------------------------------------------


class TestTokenValidator:
    async def test_valid_token(self, validator, crypto):
        claims = await validator.validate(_token(crypto))
        assert isinstance(claims, AccessClaims)
        assert claims.sub == "google-user-1"
        assert claims.aud == RESOURCE
        assert claims.scopes == {"calendar.read", "calendar.write"}

    async def test_keys_are_cached(self, validator, crypto):
        await validator.validate(_token(crypto))
        await validator.validate(_token(crypto))
        assert validator._fetch_jwks.await_count == 1

    async def test_cache_expires(self, validator, crypto, clock):
        await validator.validate(_token(crypto))
        clock.advance(validator.cache_ttl)
        await validator.validate(_token(crypto))
        assert validator._fetch_jwks.await_count == 2

    async def test_audience_mismatch(self, validator, crypto):
        with pytest.raises(TokenValidationError) as exc_info:
            await validator.validate(_token(crypto, aud="http://other-resource"))
        assert exc_info.value.error == "invalid_token"
        assert exc_info.value.status_code == 401

    async def test_issuer_mismatch(self, validator, crypto):
        with pytest.raises(TokenValidationError):
            await validator.validate(_token(crypto, iss="http://evil"))

    async def test_expired(self, validator, crypto, clock):
        token = _token(crypto)
        clock.advance(3600)
        with pytest.raises(TokenValidationError, match="expired"):
            await validator.validate(token)

    async def test_insufficient_scope(self, validator, crypto):
        with pytest.raises(TokenValidationError) as exc_info:
            await validator.validate(_token(crypto), ["calendar.events.write"])
        assert exc_info.value.error == "insufficient_scope"
        assert exc_info.value.status_code == 403

    async def test_validate_for_operation(self, validator, crypto):
        token = _token(crypto, scope="calendar.events.read")
        assert (await validator.validate_for(token, "list_events")).sub == "google-user-1"
        with pytest.raises(TokenValidationError):
            await validator.validate_for(token, "create_event")

    async def test_unknown_operation_needs_only_valid_token(self, validator, crypto):
        token = _token(crypto, scope="")
        assert await validator.validate_for(token, "some_new_tool")

    async def test_malformed_token(self, validator):
        with pytest.raises(TokenValidationError, match="Malformed"):
            await validator.validate("garbage")

    async def test_unknown_kid_triggers_refetch(self, validator, crypto, clock):
        await validator.validate(_token(crypto))
        crypto.generate_key_pair()
        clock.advance(validator.min_refetch_interval)
        claims = await validator.validate(_token(crypto))
        assert claims.sub == "google-user-1"
        assert validator._fetch_jwks.await_count == 2

    async def test_unknown_kid_refetch_is_rate_limited(self, validator, crypto, clock):
        await validator.validate(_token(crypto))
        stranger = CryptoProvider(clock=clock)
        for _ in range(5):
            with pytest.raises(TokenValidationError, match="Unknown signing key"):
                await validator.validate(_token(stranger))
        assert validator._fetch_jwks.await_count == 1

        clock.advance(validator.min_refetch_interval)
        with pytest.raises(TokenValidationError):
            await validator.validate(_token(stranger))
        assert validator._fetch_jwks.await_count == 2

    async def test_foreign_key_rejected(self, validator, clock):
        stranger = CryptoProvider(clock=clock)
        with pytest.raises(TokenValidationError, match="Unknown signing key"):
            await validator.validate(_token(stranger))

    async def test_jwks_unavailable(self, clock, crypto):
        def handler(request):
            return httpx.Response(503)

        v = TokenValidator(
            f"{ISSUER}/.well-known/jwks.json",
            RESOURCE,
            clock=clock,
            transport=httpx.MockTransport(handler),
        )
        with pytest.raises(TokenValidationError, match="Signing keys unavailable"):
            await v.validate(_token(crypto))

    async def test_fetches_over_http(self, clock, crypto):
        def handler(request):
            assert request.url.path == "/.well-known/jwks.json"
            return httpx.Response(200, json=crypto.jwks())

        v = TokenValidator(
            f"{ISSUER}/.well-known/jwks.json",
            RESOURCE,
            clock=clock,
            transport=httpx.MockTransport(handler),
        )
        assert (await v.validate(_token(crypto))).client_id == "client-1"


class TestOperationScopes:
    def test_read_and_write_split(self):
        assert scopes_for("list_calendars") == ("calendar.read",)
        assert scopes_for("delete_calendar") == ("calendar.write",)
        assert scopes_for("get_event") == ("calendar.events.read",)
        assert scopes_for("update_events") == ("calendar.events.write",)

    def test_unknown(self):
        assert scopes_for("nope") == ()


# ---------------------------------------------------------------------------
# require_bearer dependency
# ---------------------------------------------------------------------------


@pytest.fixture
def resource_client(validator):
    app = FastAPI()
    install_exception_handlers(app)

    read_scope = require_bearer(validator, "calendar.read")

    @app.get("/events")
    async def list_events(claims: AccessClaims = Depends(read_scope)):
        return {"sub": claims.sub}

    return TestClient(app)


class TestRequireBearer:
    def test_allows_valid_token(self, resource_client, crypto):
        resp = resource_client.get(
            "/events", headers={"Authorization": f"Bearer {_token(crypto)}"}
        )
        assert resp.status_code == 200
        assert resp.json() == {"sub": "google-user-1"}

    def test_missing_token(self, resource_client):
        resp = resource_client.get("/events")
        assert resp.status_code == 401
        assert resp.json() == {
            "error": "invalid_token",
            "error_description": "Missing bearer token",
        }
        assert 'error="invalid_token"' in resp.headers["www-authenticate"]

    def test_insufficient_scope(self, resource_client, crypto):
        token = _token(crypto, scope="calendar.events.read")
        resp = resource_client.get("/events", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 403
        assert resp.json()["error"] == "insufficient_scope"
        assert "detail" not in resp.json()
        assert 'scope="calendar.read"' in resp.headers["www-authenticate"]


# ---------------------------------------------------------------------------
# AuthServerClient
# ---------------------------------------------------------------------------


class TestAuthServerClient:
    async def test_fetches_tokens(self):
        def handler(request):
            assert request.url.path == "/google-tokens"
            assert request.headers["authorization"] == "Bearer local-jwt"
            return httpx.Response(
                200,
                json={
                    "access_token": "ya29.access",
                    "refresh_token": "1//refresh",
                    "token_type": "Bearer",
                    "expiry_date": 1700000000000,
                },
            )

        client = AuthServerClient(ISSUER + "/", transport=httpx.MockTransport(handler))
        tokens = await client.get_upstream_tokens("local-jwt")
        assert tokens.access_token == "ya29.access"
        assert tokens.refresh_token == "1//refresh"
        assert tokens.expires_at == 1700000000

    async def test_not_found(self):
        def handler(request):
            return httpx.Response(
                404,
                json={"error": "not_found", "error_description": "No Google tokens found for user"},
            )

        client = AuthServerClient(ISSUER, transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamTokensUnavailable) as exc_info:
            await client.get_upstream_tokens("local-jwt")
        assert exc_info.value.status_code == 404
        assert exc_info.value.error == "not_found"

    async def test_non_json_error(self):
        def handler(request):
            return httpx.Response(502, text="bad gateway")

        client = AuthServerClient(ISSUER, transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamTokensUnavailable) as exc_info:
            await client.get_upstream_tokens("local-jwt")
        assert exc_info.value.error == "server_error"

    async def test_error_body_that_is_not_an_object(self):
        def handler(request):
            return httpx.Response(500, json=["unexpected"])

        client = AuthServerClient(ISSUER, transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamTokensUnavailable) as exc_info:
            await client.get_upstream_tokens("local-jwt")
        assert exc_info.value.error == "server_error"
        assert exc_info.value.status_code == 500
