"""Entry point for the sprite sheet loop web service."""

from __future__ import annotations

import logging
import os
import sys

import uvicorn

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def run() -> int:
    """Serve the FastAPI app with uvicorn."""

    configure_logging(os.environ.get("SSL_DEBUG", "") not in ("", "0"))
    uvicorn.run(
        "spritesheetloop.web.server:app",
        host=os.environ.get("SSL_HOST", "127.0.0.1"),
        port=int(os.environ.get("SSL_PORT", "8000")),
    )
    return 0


if __name__ == "__main__":
    sys.exit(run())
