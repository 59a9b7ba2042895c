"""Shared logging helpers for Alertcast services."""

from __future__ import annotations

import logging
from pythonjsonlogger import jsonlogger


def configure_logging(level: int = logging.INFO) -> None:
    """Configure JSON logging for the CLI and embedding services."""
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s"
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=[handler], force=True)
    # request lines from httpx drown out provider diagnostics
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
