"""
AgriConnect assistant entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(API server or terminal chat client).
"""

import argparse
import logging
import sys

from agriconnect.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # Every tool and backend call goes through httpx; keep its request log quiet
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the AgriConnect assistant.

    This function sets up the command-line interface, initializes logging, and starts either the
    API server or the terminal client.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run the AgriConnect AI assistant")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Launch the REST API or the terminal chat client (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument(
        "--api-url",
        default=None,
        help="Base URL of a running API for --mode cli (default: http://localhost:API_PORT)",
    )
    parser.add_argument(
        "--token",
        default=None,
        help="Supabase access token to chat as a signed-in user (--mode cli)",
    )
    args = parser.parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting AgriConnect assistant [%s mode]", args.mode)
    logger.debug("Backend: %s, max iterations: %d", settings.BACKEND, settings.MAX_ITERATIONS)

    if args.mode == "api":
        # Lazy import to avoid server dependencies if not needed
        from agriconnect.api.app import run_api  # pylint: disable=import-outside-toplevel

        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
    else:
        from agriconnect.client.cli import run_cli  # pylint: disable=import-outside-toplevel

        run_cli(token=args.token, base_url=args.api_url)


if __name__ == "__main__":
    main()
