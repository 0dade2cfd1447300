"""
Logging setup for copilot_session.

Thin wrapper over loguru so every module can do
``logger = get_logger(__name__)`` and the embedding host decides the level.
"""

import os
import sys

from loguru import logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str | None = None, sink=sys.stderr) -> None:
    """
    Configure the loguru sink.

    Args:
        level: Minimum level. Defaults to COPILOT_LOG_LEVEL, then LOGURU_LEVEL, then INFO.
        sink: Where records go (stderr by default).
    """
    level = level or os.getenv("COPILOT_LOG_LEVEL") or os.getenv("LOGURU_LEVEL", "INFO")
    logger.remove()
    logger.configure(extra={"component": "copilot_session"})
    logger.add(sink, level=level.upper(), format=_FORMAT, backtrace=False)


def get_logger(name: str):
    """Return a logger bound to the calling module's name."""
    return logger.bind(component=name)
