"""Logging setup for kb-rag entry points."""

from __future__ import annotations

import logging
from typing import Optional

from .config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Attach one stream handler to the root logger; no-op when already configured."""
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    level_name = (level or get_settings().log_level).upper()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.addHandler(handler)
