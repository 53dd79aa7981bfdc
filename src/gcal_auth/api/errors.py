# OAuth error type and FastAPI exception handlers.
# Created: 2026-10-18
#
# Every failure leaves the server as {"error": ..., "error_description": ...}.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


class OAuthError(Exception):
    """Protocol-level failure with a standard OAuth error code."""

    def __init__(
        self,
        error: str,
        description: str,
        status_code: int = 400,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(f"{error}: {description}")
        self.error = error
        self.description = description
        self.status_code = status_code
        self.headers = headers or {}

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


def bearer_challenge(error: str, description: str) -> dict[str, str]:
    """WWW-Authenticate header for a failed bearer token (RFC 6750 §3)."""
    return {"WWW-Authenticate": f'Bearer error="{error}", error_description="{description}"'}


def oauth_error_response(exc: OAuthError) -> JSONResponse:
    headers = {"Cache-Control": "no-store", **exc.headers}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def _handle_oauth_error(request: Request, exc: OAuthError) -> JSONResponse:
    logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.error, exc.description)
    return oauth_error_response(exc)


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) for err in exc.errors())
    return oauth_error_response(
        OAuthError("invalid_request", f"Malformed request parameters: {fields or 'body'}")
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return oauth_error_response(OAuthError("server_error", "Internal server error", 500))


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OAuthError, _handle_oauth_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected)
