# OAuth 2.1 endpoints.
# Created: 2026-10-18

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, ValidationError

from gcal_auth.api.errors import OAuthError
from gcal_auth.api.oauth2.pages import code_page, error_page, wants_html
from gcal_auth.api.schemas.oauth2 import (
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    RevokeRequest,
    TokenRequest,
    TokenResponse,
    UpstreamTokensResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

CALLBACK_PATH = "/oauth/google/callback"
# Older Google redirect URIs that may still be registered in the Cloud console.
LEGACY_CALLBACK_PATHS = ["/auth/google/callback", "/oauth/callback"]

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


async def _read_params(request: Request, model: type[BaseModel]) -> Any:
    """Parse a form-encoded or JSON body into *model*."""
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            raw = await request.json()
            if not isinstance(raw, dict):
                raise OAuthError("invalid_request", "Request body must be a JSON object")
        else:
            form = await request.form()
            raw = {k: v for k, v in form.items() if isinstance(v, str)}
    except ValueError as exc:
        raise OAuthError("invalid_request", "Malformed request body") from exc

    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err["loc"])
        raise OAuthError("invalid_request", f"Malformed fields: {fields}") from exc


@router.post("/register", status_code=201, response_model=ClientRegistrationResponse)
async def register_client(request: Request):
    """Dynamic client registration (RFC 7591). Public clients only."""
    from gcal_auth.api.oauth2.server import get_oauth_server

    body: ClientRegistrationRequest = await _read_params(request, ClientRegistrationRequest)
    return get_oauth_server().register_client(
        client_name=body.client_name,
        redirect_uris=body.redirect_uris,
        grant_types=body.grant_types,
        response_types=body.response_types,
    )


@router.get("/authorize")
async def authorize(
    client_id: str | None = Query(None),
    response_type: str | None = Query(None),
    redirect_uri: str | None = Query(None),
    scope: str | None = Query(None),
    state: str | None = Query(None),
    code_challenge: str | None = Query(None),
    code_challenge_method: str | None = Query(None),
    resource: str | None = Query(None),
):
    """Validate the request and send the user agent to Google's consent screen."""
    from gcal_auth.api.oauth2.server import get_oauth_server

    consent_url = get_oauth_server().begin_authorization(
        client_id=client_id,
        response_type=response_type,
        redirect_uri=redirect_uri,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        resource=resource,
        scope=scope,
    )
    return RedirectResponse(consent_url, status_code=302)


@router.get(CALLBACK_PATH)
async def google_callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    accept: str | None = Header(None),
):
    """Google redirects here after consent; we redirect on to the client."""
    from gcal_auth.api.oauth2.server import get_oauth_server

    try:
        redirect_url = await get_oauth_server().complete_upstream_callback(
            code=code, state=state, error=error
        )
    except OAuthError as exc:
        if not wants_html(accept):
            raise
        logger.info("Google callback failed: %s (%s)", exc.error, exc.description)
        return HTMLResponse(error_page(exc.error, exc.description), status_code=exc.status_code)
    return RedirectResponse(redirect_url, status_code=302)


async def _legacy_callback(request: Request):
    target = CALLBACK_PATH
    if request.url.query:
        target = f"{target}?{request.url.query}"
    logger.warning("Deprecated callback path %s used", request.url.path)
    return RedirectResponse(target, status_code=307)


for _path in LEGACY_CALLBACK_PATHS:
    router.add_api_route(
        _path, _legacy_callback, methods=["GET"], deprecated=True, include_in_schema=False
    )


@router.get("/oauth/landing", response_class=HTMLResponse)
async def landing(
    code: str = Query(""),
    state: str = Query(""),
    error: str = Query(""),
    error_description: str = Query(""),
):
    """Built-in redirect target that shows the code to a human."""
    if error:
        return HTMLResponse(error_page(error, error_description or "Authorization failed"), 400)
    if not code:
        return HTMLResponse(error_page("invalid_request", "No authorization code received"), 400)
    return HTMLResponse(code_page(code, state))


@router.post("/token", response_model=TokenResponse, response_model_exclude_none=True)
async def token(request: Request):
    """Exchange an authorization code or refresh token for an access token."""
    from gcal_auth.api.oauth2.server import get_oauth_server

    body: TokenRequest = await _read_params(request, TokenRequest)
    result = get_oauth_server().exchange_token(
        grant_type=body.grant_type,
        resource=body.resource,
        client_id=body.client_id,
        code=body.code,
        redirect_uri=body.redirect_uri,
        code_verifier=body.code_verifier,
        refresh_token=body.refresh_token,
    )
    return JSONResponse(result, headers=_NO_STORE)


@router.post("/revoke")
async def revoke(request: Request):
    """Revoke a refresh token (RFC 7009). Always 200 for well-formed requests."""
    from gcal_auth.api.oauth2.server import get_oauth_server

    body: RevokeRequest = await _read_params(request, RevokeRequest)
    get_oauth_server().revoke(body.token)
    return JSONResponse({}, headers=_NO_STORE)


@router.get("/google-tokens", response_model=UpstreamTokensResponse)
async def google_tokens(authorization: str | None = Header(None)):
    """Hand the cached Google tokens to the holder of a valid access token."""
    from gcal_auth.api.oauth2.server import get_oauth_server

    tokens = await get_oauth_server().upstream_tokens_for(authorization)
    return JSONResponse(tokens, headers=_NO_STORE)
