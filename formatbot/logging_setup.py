"""Configure the loguru sink used by the CLI."""

from __future__ import annotations

import sys
from typing import Optional

from loguru import logger

from formatbot.config import LOGGING

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging(level: Optional[str] = None, *, json_logs: Optional[bool] = None) -> int:
    """Replace the default loguru sink with a stderr sink at level.

    Returns the loguru handler id.
    """
    logger.remove()
    return logger.add(
        sys.stderr,
        level=(level or LOGGING.LEVEL).upper(),
        format=_FORMAT,
        serialize=LOGGING.JSON if json_logs is None else json_logs,
        backtrace=False,
        diagnose=False,
    )
