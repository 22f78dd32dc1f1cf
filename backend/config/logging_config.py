"""Logging configuration for the spellbook rules engine."""
import os
import sys
from datetime import datetime
from loguru import logger

from utils.paths import get_writable_dir


STDERR_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:{line} - <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}"

SESSION_ID = datetime.now().strftime("%Y%m%d_%H%M%S")


def configure_logging(log_to_files: bool = True):
    """Configure Loguru logging."""
    logger.remove()

    log_filter = os.getenv("LOG_FILTER", "")
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    if log_filter:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format=STDERR_FORMAT,
            filter=lambda record: log_filter in record["name"]
        )
    else:
        logger.add(sys.stderr, level=log_level, format=STDERR_FORMAT)

    if not log_to_files:
        return logger

    log_dir = get_writable_dir("logs")

    logger.add(
        log_dir / f"spellbook_{SESSION_ID}.log",
        rotation="5 MB",
        retention=5,
        level="DEBUG",
        format=FILE_FORMAT
    )

    logger.add(
        log_dir / "error.log",
        rotation="10 MB",
        retention="14 days",
        level="ERROR",
        format=FILE_FORMAT
    )

    return logger
