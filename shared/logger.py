"""
Console logging for the AI router.

Router components log to stdout with colored output. Providers derive child
loggers from the router logger (``ai_router.<provider>``), so changing the
level of ``ai_router`` with ``set_level`` quiets or opens up every adapter at
once. Components take an optional logger argument so callers can inject their
own.

Usage:
    from shared.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Message here")
"""

import logging
import sys
from typing import Dict, Optional, Union

_loggers: Dict[str, logging.Logger] = {}

LOG_FORMAT = '%(asctime)s | %(name)s | %(levelname)s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    """Colors the level name; the record itself is left untouched for other handlers."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        color = self.COLORS.get(original)
        if color:
            record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def get_logger(name: str, level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Get a cached logger writing colored lines to stdout.

    Args:
        name: Logger name (typically __name__ or ``ai_router``)
        level: Logging level; defaults to ``config.log_level``
    """
    if name in _loggers:
        return _loggers[name]

    if level is None:
        from shared.config import config

        level = config.log_level
    resolved = _coerce_level(level)

    logger = logging.getLogger(name)
    logger.setLevel(resolved)
    logger.propagate = False
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(ColoredFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)

    _loggers[name] = logger
    return logger


def set_level(name: str, level: Union[int, str]) -> logging.Logger:
    """Change the level of a logger from ``get_logger`` and of its handlers."""
    logger = get_logger(name)
    resolved = _coerce_level(level)
    logger.setLevel(resolved)
    for handler in logger.handlers:
        handler.setLevel(resolved)
    return logger
