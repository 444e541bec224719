"""Process-wide logging setup."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Install the root handler once; `DEV_ASSISTANT_LOG_LEVEL` overrides the default."""

    resolved = level if level is not None else os.getenv("DEV_ASSISTANT_LOG_LEVEL", "INFO")
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logging.getLogger("httpx").setLevel(max(resolved, logging.WARNING))
