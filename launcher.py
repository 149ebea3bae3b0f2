"""Application launcher for the intake API server."""
from __future__ import annotations

import argparse
import os
import sys
from typing import Optional

import uvicorn

from deal_intake.shared.logging import get_logger, setup_logging


logger = get_logger(__name__)


def run_app(
    host: str = "0.0.0.0",
    port: int = 8000,
    reload: bool = False,
) -> None:
    """
    Main entry point for serving the intake API.

    Configures the shared logger, then runs deal_intake.api.http.server:app
    under uvicorn.
    """
    setup_logging()

    logger.info("Starting API server on %s:%d", host, port)
    uvicorn_kwargs = {
        "app": "deal_intake.api.http.server:app",
        "host": host,
        "port": port,
        # uvicorn keeps our logging setup instead of installing its own handlers
        "log_config": None,
        "timeout_keep_alive": 5,
        "timeout_graceful_shutdown": 3,
    }

    if reload:
        uvicorn_kwargs.update(
            {
                "reload": True,
                "reload_dirs": [os.path.join(os.getcwd(), "deal_intake")],
                "reload_excludes": [
                    "venv",
                    ".venv",
                    ".git",
                    "__pycache__",
                    "site-packages",
                ],
            }
        )

    uvicorn.run(**uvicorn_kwargs)


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the launcher CLI."""
    parser = argparse.ArgumentParser(description="Run the deal document intake API server.")
    parser.add_argument(
        "--host",
        default=os.getenv("APP_HOST", "0.0.0.0"),
        help="HTTP host (APP_HOST or 0.0.0.0).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("APP_PORT", os.getenv("PORT", "8000"))),
        help="HTTP port (APP_PORT, PORT or 8000).",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("APP_RELOAD", "false").lower() == "true",
        help="Enable uvicorn auto-reload (development only).",
    )

    args = parser.parse_args(argv or sys.argv[1:])
    run_app(host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
