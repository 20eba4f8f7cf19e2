"""Loguru sink configuration for the check-in runner"""

import sys
from typing import Optional

from loguru import logger


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Replace loguru's default sink

    Args:
        level: Minimum level for both sinks
        log_file: Optional file path; rotated at 10 MB, kept 7 days
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=CONSOLE_FORMAT, colorize=True)

    if log_file:
        logger.add(
            log_file,
            level=level.upper(),
            format=FILE_FORMAT,
            rotation="10 MB",
            retention="7 days",
            encoding="utf-8",
            enqueue=True,
        )
        logger.debug(f"Logging to file: {log_file}")


def mask_secret(value: Optional[str], head: int = 6, tail: int = 4) -> str:
    """Shorten a key/signature for display, e.g. 0x1234…cdef"""
    if not value:
        return "<none>"
    if len(value) <= head + tail:
        return "*" * len(value)
    return f"{value[:head]}…{value[-tail:] if tail else ''}"
