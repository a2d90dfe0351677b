"""Logging for debrepo.

Library modules only emit, through children of the ``debrepo`` logger
obtained with :func:`get_logger`. The command line calls :func:`setup_logger`
once to attach console and rotating-file handlers to that root.
"""

import logging
import logging.handlers
import os
from typing import Optional

ROOT_LOGGER = "debrepo"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Worker threads are named debrepo_N by the orchestrator's executor
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] [%(threadName)s] [%(name)s] %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# httpx logs every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def _file_handler(
    log_dir: str, name: str, max_bytes: int, backup_count: int
) -> logging.Handler:
    os.makedirs(log_dir, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, f"{name}.log"),
        maxBytes=max_bytes,
        backupCount=backup_count,
    )


def setup_logger(
    name: str = ROOT_LOGGER,
    log_dir: Optional[str] = None,
    level: str = "INFO",
    log_format: str = DEFAULT_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    console_logging: bool = True,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Attach handlers to the project logger.

    Calling this again only updates the level; handlers are attached once.

    Args:
        name: Logger to configure; the project root by default
        log_dir: Directory for ``<name>.log``; no file output when None
        level: One of LOG_LEVELS
        log_format: Record format
        date_format: Timestamp format (ISO 8601 by default)
        console_logging: Also log to stderr
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files kept

    Returns:
        The configured logger

    Raises:
        ValueError: On an unknown level
    """
    level_upper = level.upper()
    if level_upper not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of: {', '.join(LOG_LEVELS)}")

    logger = logging.getLogger(name)
    logger.setLevel(level_upper)
    if logger.handlers:
        return logger

    handlers = []
    if log_dir:
        handlers.append(_file_handler(log_dir, name, max_bytes, backup_count))
    if console_logging:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(log_format, datefmt=date_format)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if level_upper != "DEBUG":
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for one pipeline component.

    Args:
        name: Component name such as "fetcher"; names already under the
            project root are used as given

    Returns:
        Logger named ``debrepo.<name>``
    """
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
