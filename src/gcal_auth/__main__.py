"""gcal-auth entry point.

Changes:
  - 2026-10-18: ``serve`` (default) and ``metadata`` commands.
"""

import argparse
import json
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from gcal_auth.config import get_settings
from gcal_auth.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("gcal-auth")
    except PackageNotFoundError:
        return "unknown"


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="OAuth 2.1 authorization server for the Google Calendar MCP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gcal-auth                          Start the server (default)
  gcal-auth serve --port 3082        Start on a specific port
  gcal-auth serve --dev              Start with auto-reload
  gcal-auth metadata                 Print the discovery document
""",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "metadata"],
        help="What to run (default: serve)",
    )
    parser.add_argument("--host", type=str, default=None, help="Host to bind")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port to bind")
    parser.add_argument(
        "--dev", action="store_true", help="Auto-reload on source changes (development only)"
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {_version()}")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(level=settings.log_level)

    if args.command == "metadata":
        from gcal_auth.api.oauth2.server import get_oauth_server

        print(json.dumps(get_oauth_server().metadata(), indent=2))
        return

    from gcal_auth.api.serve import run_api_server

    host = args.host or settings.host
    port = args.port or settings.port
    try:
        run_api_server(host=host, port=port, dev=args.dev)
    except KeyboardInterrupt:
        logger.info("Authorization server stopped")


if __name__ == "__main__":
    main()
