"""
edgecall entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(API server, or API server plus interactive CLI).
"""

import argparse
import logging
import sys

from edgecall.agent.engine_interface import available_engines
from edgecall.api.app import run_api
from edgecall.config import settings

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
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the edgecall application.

    Sets up the command-line interface, initializes logging, and starts the API server, optionally
    with the interactive CLI attached.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run the edgecall tool-calling assistant")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Launch the REST API only, or the API plus an interactive CLI (default: api)",
    )
    parser.add_argument(
        "--engine",
        choices=available_engines(),
        type=str.lower,
        default=settings.ENGINE,
        help="Inference engine (default from env: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Command-line arguments win over env settings
    settings.LOG_LEVEL = args.log_level
    settings.ENGINE = args.engine

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting edgecall [%s mode, %s engine]", args.mode, settings.ENGINE)

    if args.mode == "api":
        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
        return

    import threading  # pylint: disable=import-outside-toplevel

    # API server in a daemon thread, CLI in the main thread
    api_thread = threading.Thread(
        target=run_api,
        kwargs={
            "host": "127.0.0.1",
            "port": settings.API_PORT,
            "reload": False,  # Reload doesn't work well with threading
            "log_level": "warning",
        },
        daemon=True,
    )
    api_thread.start()

    from edgecall.client.cli import (  # pylint: disable=import-outside-toplevel
        run_cli,
    )

    run_cli()


if __name__ == "__main__":
    main()
