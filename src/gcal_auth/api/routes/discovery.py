# Discovery endpoints.
# Created: 2026-10-18

from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Discovery"])


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server_metadata():
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    from gcal_auth.api.oauth2.server import get_oauth_server

    return get_oauth_server().metadata()


@router.get("/.well-known/jwks.json")
async def jwks():
    """Public signing keys for resource servers."""
    from gcal_auth.api.oauth2.server import get_oauth_server

    return get_oauth_server().jwks()


@router.get("/health")
async def health():
    return {"status": "ok"}
