"""Logging configuration for nodectl.

Everything nodectl logs lives under the ``nodectl`` logger. Console output
goes to stderr because stdout carries the status report scripts parse.
"""

import logging
import sys
from pathlib import Path

LOGGER_NAME = "nodectl"

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
# Backend calls run on worker threads, so the file log names the thread
FILE_FORMAT = "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    verbose: bool = False,
    quiet: bool = False,
) -> None:
    """Configure logging for the application.

    Args:
        level: Level for nodectl's own loggers (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        verbose: If True, log DEBUG and show it on the console
        quiet: If True, only show errors on the console; ignored when ``verbose``
    """
    if verbose:
        level = "DEBUG"
        console_level = logging.DEBUG
    elif quiet:
        console_level = logging.ERROR
    else:
        console_level = logging.WARNING

    root_logger = logging.getLogger()
    # Libraries stay at WARNING whatever level nodectl runs at
    root_logger.setLevel(logging.WARNING)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
            root_logger.addHandler(file_handler)
        except OSError as e:
            logging.warning(f"Failed to create log file handler: {e}")

    logging.getLogger(LOGGER_NAME).setLevel(getattr(logging, level.upper()))


def get_logger(name: str) -> logging.Logger:
    """Get a logger in the nodectl namespace.

    Args:
        name: Logger name (typically __name__); prefixed with ``nodectl.`` if outside it

    Returns:
        Logger instance
    """
    if name != LOGGER_NAME and not name.startswith(f"{LOGGER_NAME}."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)
