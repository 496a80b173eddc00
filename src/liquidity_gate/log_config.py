"""Logging setup for command-line use.

Library modules only create ``logging.getLogger(__name__)`` loggers and
never configure handlers. Entry points call ``setup_logging`` once.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: str = "WARNING") -> None:
    """Configure the root logger. Logs go to stderr so stdout stays parseable."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
