"""FastAPI application for the authorization server.

``create_api_app()`` wires the discovery and OAuth routers, CORS, the uniform
error handlers, and a background task that sweeps expired codes and refresh
tokens once per ``cleanup_interval_seconds``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI

from gcal_auth.api.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)


async def sweep_periodically(server: AuthorizationServer, interval: float) -> None:
    """Evict expired protocol state forever. Cancel the task to stop it."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = server.sweep_expired()
        except Exception:
            logger.exception("Credential sweep failed")
        else:
            if removed:
                logger.info("Swept %d expired codes/tokens", removed)


def create_api_app() -> FastAPI:
    """Build the FastAPI application."""
    from fastapi.middleware.cors import CORSMiddleware

    from gcal_auth.api.errors import install_exception_handlers
    from gcal_auth.api.oauth2.server import get_oauth_server
    from gcal_auth.api.routes import discovery, oauth2
    from gcal_auth.config import get_settings

    settings = get_settings()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        server = get_oauth_server()
        task = asyncio.create_task(
            sweep_periodically(server, settings.cleanup_interval_seconds)
        )
        logger.info(
            "Authorization server ready at %s (resource %s)", server.issuer, server.resource_id
        )
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = FastAPI(
        title="Google Calendar MCP Authorization Server",
        description="OAuth 2.1 authorization server that signs users in with Google.",
        version="0.1.0",
        lifespan=lifespan,
    )

    # --- CORS -----------------------------------------------------------
    # Public clients only: no cookies, so credentials stay off.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins or ["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    install_exception_handlers(app)

    app.include_router(discovery.router)
    app.include_router(oauth2.router)

    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 3080,
    dev: bool = False,
) -> None:
    """Start the authorization server under uvicorn."""
    import uvicorn

    from gcal_auth.config import get_settings

    settings = get_settings()

    print("\n" + "=" * 50)
    print("OAUTH 2.1 AUTHORIZATION SERVER")
    print("=" * 50)
    print(f"\nDiscovery: {settings.issuer}/.well-known/oauth-authorization-server")
    print(f"JWKS:      {settings.issuer}/.well-known/jwks.json")
    print(f"Resource:  {settings.resource_id}\n")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "gcal_auth.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port, log_config=None)
