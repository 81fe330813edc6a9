# conv_runtime/utils/logging.py
# -*- coding: utf-8 -*-
"""
conv-runtime — logging utilities
--------------------------------
Central logging configuration for the relay.

We try to:
- Use a consistent format across all modules.
- Honour settings.debug (more verbose in dev).
- Keep uvicorn / websockets / urllib3 chatter out of the way.
"""

from __future__ import annotations

import logging
import os
from typing import Optional


def setup_logging(
    *,
    debug: bool = False,
    level: Optional[int] = None,
) -> None:
    """
    Configure root logging for the process.

    Parameters
    ----------
    debug:
        If True, default log level becomes DEBUG, otherwise INFO.
        This is typically wired from settings.debug.
    level:
        Optional explicit logging level (overrides debug flag).

    Calling it more than once only adjusts levels.
    """
    if level is not None:
        base_level = level
    else:
        base_level = logging.DEBUG if debug else logging.INFO

    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    root = logging.getLogger()
    if root.handlers:
        root.setLevel(base_level)
        for h in root.handlers:
            h.setLevel(base_level)
        return

    logging.basicConfig(
        level=base_level,
        format=fmt,
        datefmt=datefmt,
    )

    for noisy in ("uvicorn.access", "websockets", "urllib3"):
        logging.getLogger(noisy).setLevel(os.getenv("CONV_NOISY_LOG_LEVEL", "WARNING"))


def get_logger(name: str) -> logging.Logger:
    """Thin wrapper around logging.getLogger, kept for a single import point."""
    return logging.getLogger(name)
