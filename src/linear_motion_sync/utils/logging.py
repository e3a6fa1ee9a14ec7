"""Logging configuration for the Linear/Motion synchronizer."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "linear-motion-sync.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"

# Libraries that log every request at INFO
CHATTY_LOGGERS = ("httpx", "httpcore")


def setup_logging(log_level: int = logging.INFO, config_dir: Path | None = None) -> Path:
    """Send log records to a rotating file and to the console.

    Calling it again replaces the handlers of an earlier call.

    Args:
        log_level: Level for both handlers.
        config_dir: Directory holding the log file. Defaults to ~/.linear-motion-sync/

    Returns:
        Path of the log file.
    """
    log_dir = config_dir or Path.home() / ".linear-motion-sync"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    file_handler = RotatingFileHandler(
        log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
    )
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)
    for handler in (file_handler, console_handler):
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    library_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    return log_file


def get_logger(name: str) -> logging.Logger:
    """Get a module logger."""
    return logging.getLogger(name)
