"""Command-line entrypoint for running the ScheduleScan backend."""

from __future__ import annotations

import argparse
import os

import uvicorn

from .config import get_settings

APP_PATH = "schedulescan.main:app"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments, defaulting to configured settings."""

    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default=settings.host, help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to bind.")
    parser.add_argument(
        "--log-level", default=settings.log_level, help="Log level passed to Uvicorn."
    )
    parser.add_argument(
        "--reload",
        dest="reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() in {"1", "true", "yes"},
        help="Enable autoreload for development.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Launch the FastAPI application with uvicorn."""

    args = parse_args(argv)
    uvicorn.run(
        APP_PATH,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
