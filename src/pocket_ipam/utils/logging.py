"""Logging setup shared by the CLI and the core modules."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "pocket-ipam"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the application namespace.

    Args:
        name: Module name, e.g. ``__name__``. A leading ``pocket_ipam.`` is dropped
            so records read ``pocket-ipam.core.storage``.
    """
    if name.startswith("pocket_ipam."):
        name = name[len("pocket_ipam."):]
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def reset_logging() -> None:
    """Close and detach every handler installed by ``configure_logging``."""
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


def configure_logging(level: str = "WARNING", log_file: Optional[Path] = None) -> logging.Logger:
    """Attach a stderr handler and, when possible, a rotating file handler.

    Args:
        level: Level name for the console handler.
        log_file: File to append to. Skipped when its directory does not exist yet
            (before ``init``) so that read-only commands never create the data dir.

    Returns:
        The application root logger.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    reset_logging()
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    level_value = logging.getLevelName(level.upper())
    if not isinstance(level_value, int):
        level_value = logging.WARNING

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level_value)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file is not None and log_file.parent.is_dir():
        try:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            )
        except OSError:
            logger.debug("log file %s is not writable, logging to stderr only", log_file)
        else:
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger
