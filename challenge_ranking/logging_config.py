"""
Logging configuration for the challenge ranking engine.

Sets up loguru sinks. Every record carries extra["name"], the component that
emitted it (engine, progress, sqlite_storage, ...).
"""

import sys
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_NAME = "challenge_ranking"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}:{function}:{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]}:{function}:{line} - {message}"


def setup_logging(level: str = "INFO", debug: bool = False, log_dir: Path | None = Path(".")) -> None:
    """
    Configure loguru logging.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        debug: Force DEBUG on the console and add a verbose debug file
        log_dir: Directory for the rotating log files (None logs to stderr only)
    """
    logger.remove()
    _ = logger.configure(extra={"name": DEFAULT_NAME})

    _ = logger.add(sys.stderr, level="DEBUG" if debug else level, format=CONSOLE_FORMAT)

    if log_dir is None:
        return

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Votes, entries into the ranking and resolved days
    _ = logger.add(
        log_dir / f"{DEFAULT_NAME}.log",
        level="INFO",
        format=FILE_FORMAT,
        rotation="10 MB",
        retention="7 days",
        compression="zip",
    )

    if debug:
        _ = logger.add(
            log_dir / f"{DEFAULT_NAME}_debug.log",
            level="DEBUG",
            format=FILE_FORMAT,
            rotation="50 MB",
            retention="3 days",
            compression="zip",
        )


def get_logger(name: str | None = None) -> Any:
    """
    Get a logger bound to a component name.

    Args:
        name: Component name shown in log lines (defaults to the package name)

    Returns:
        Logger instance
    """
    return logger.bind(name=name or DEFAULT_NAME)
