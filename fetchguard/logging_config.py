"""Logging configuration using loguru"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(
    verbose: bool = False, log_file: Optional[Path] = None, json_logs: bool = False
) -> None:
    """
    Configure loguru for the gate, the fetch controller and the CLI.

    Args:
        verbose: Enable debug-level logging (every attempt and arbiter call)
        log_file: Optional file path for log output, rotated and compressed
        json_logs: Emit one JSON object per line on stdout for log shippers
    """
    logger.remove()

    console_level = "DEBUG" if verbose else "INFO"
    if json_logs:
        logger.add(sys.stdout, level=console_level, serialize=True)
    else:
        logger.add(sys.stdout, format=CONSOLE_FORMAT, level=console_level, colorize=True)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            enqueue=True,  # Safe across the CLI's event loop and worker threads
        )
        logger.debug(f"Logging to file: {log_file}")
