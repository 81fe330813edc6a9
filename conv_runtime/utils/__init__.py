# conv_runtime/utils/__init__.py
# -*- coding: utf-8 -*-
"""
conv-runtime — utility toolbox
------------------------------
Shared helpers used across the relay:

- logging : central logging configuration
- timers  : stopwatch for upstream latency

    from conv_runtime.utils import setup_logging, get_logger
"""

from __future__ import annotations

from .logging import (  # noqa: F401
    setup_logging,
    get_logger,
)

from .timers import (  # noqa: F401
    Stopwatch,
)
