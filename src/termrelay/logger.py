"""
Logging setup built on loguru.

Modules call ``get_logger(__name__)`` and log with f-strings; the server and
CLI call ``setup_logging`` once at start-up.
"""

import sys
from typing import Optional

from loguru import logger as _logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_logger.configure(extra={"name": "termrelay"})


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure the global loguru sinks.

    Args:
        level: Minimum level for console output.
        log_file: Optional path for a rotating file sink.
    """
    _logger.remove()
    _logger.add(sys.stderr, level=level.upper(), format=_FORMAT, colorize=True)
    if log_file:
        _logger.add(
            log_file,
            level=level.upper(),
            format=_FORMAT,
            rotation="10 MB",
            retention=3,
            enqueue=True,
        )


def get_logger(name: str):
    """Return a logger bound to a module name."""
    return _logger.bind(name=name)
