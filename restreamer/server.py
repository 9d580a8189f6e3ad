"""Run the restreamer control server under uvicorn."""

from __future__ import annotations

import logging
import os

import uvicorn

from .config import RestreamerConfig, load_config
from .web import create_app


def setup_logging(level: str | None = None) -> None:
    """Configure logging for the application."""
    log_level = (level or os.getenv("RESTREAMER_LOG_LEVEL", "INFO")).upper()

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    # Keep request polling out of the console
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("restreamer").setLevel(getattr(logging, log_level, logging.INFO))


def run_server(config: RestreamerConfig | None = None, log_level: str | None = None) -> None:
    config = config or load_config()
    setup_logging(log_level)
    logging.getLogger(__name__).info(
        "Serving restreamer on http://%s:%s", config.server.host, config.server.port
    )
    uvicorn.run(create_app(config), host=config.server.host, port=config.server.port, log_config=None)
