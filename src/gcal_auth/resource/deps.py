# FastAPI dependencies for resource servers.
# Created: 2026-10-18

from __future__ import annotations

from fastapi import Request

from gcal_auth.api.errors import OAuthError
from gcal_auth.resource.validator import AccessClaims, TokenValidationError, TokenValidator


def require_bearer(validator: TokenValidator, *scopes: str):
    """FastAPI dependency that validates the bearer token and required scopes.

    Usage::

        validator = TokenValidator(jwks_url, resource_id="http://localhost:3002")
        install_exception_handlers(app)

        @router.get("/events")
        async def list_events(claims: AccessClaims = Depends(require_bearer(
            validator, "calendar.events.read"
        ))): ...

    On failure raises ``OAuthError`` with 401 (``invalid_token``) or 403
    (``insufficient_scope``) and a ``WWW-Authenticate`` challenge. The handlers
    from ``gcal_auth.api.errors.install_exception_handlers`` render it as the
    usual ``{"error": ..., "error_description": ...}`` body.
    """

    async def _check(request: Request) -> AccessClaims:
        scheme, _, token = request.headers.get("authorization", "").partition(" ")
        try:
            if scheme.lower() != "bearer" or not token.strip():
                raise TokenValidationError("invalid_token", "Missing bearer token")
            claims = await validator.validate(token.strip(), scopes)
        except TokenValidationError as exc:
            challenge = f'Bearer error="{exc.error}", error_description="{exc.description}"'
            if exc.error == "insufficient_scope":
                challenge += f', scope="{" ".join(scopes)}"'
            raise OAuthError(
                exc.error,
                exc.description,
                exc.status_code,
                {"WWW-Authenticate": challenge},
            ) from exc
        request.state.access_claims = claims
        return claims

    return _check
