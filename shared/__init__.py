"""Shared configuration and logging for the AI router"""

from .config import config
from .logger import get_logger, set_level

__all__ = [
    "config",
    "get_logger",
    "set_level",
]
