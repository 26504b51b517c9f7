# src/market_logging.py
"""
Logging setup for the market simulation.

Call ``configure_logging()`` once from an entry point (CLI, demo script)
before running the engine. Library modules only ever use
``logging.getLogger(__name__)``.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional

_CONFIGURED = False

_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def configure_logging(
    level: Optional[str] = None,
    fmt: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
) -> None:
    """Install a single stdout handler on the root logger.

    ``level`` falls back to the ``LOG_LEVEL`` environment variable, then INFO.
    Repeated calls are no-ops.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    env_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    resolved = _LEVEL_MAP.get(level.upper() if level else env_level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(resolved)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=fmt))
        root.addHandler(handler)

    # matplotlib is chatty at DEBUG when the demo script is used
    logging.getLogger("matplotlib").setLevel(logging.WARNING)

    _CONFIGURED = True
