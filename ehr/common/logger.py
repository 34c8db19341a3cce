"""Logging setup for the EHR service.

Two loggers get handlers of their own:

- ``ehr``: application log (console, optionally ``<log_dir>/ehr.log``)
- ``ehr.audit.failures``: unpersisted audit entries, also written to
  ``<log_dir>/audit-failures.log`` when file logging is on so operators can
  alert on a single file

Both rotate by size and use ISO 8601 timestamps.
"""

import logging
import logging.handlers
import os
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ehr.core.config import Settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
AUDIT_FAILURE_LOGGER = "ehr.audit.failures"

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _rotating_file_handler(
    log_dir: str,
    filename: str,
    formatter: logging.Formatter,
    max_bytes: int,
    backup_count: int,
) -> logging.Handler:
    os.makedirs(log_dir, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, filename), maxBytes=max_bytes, backupCount=backup_count
    )
    handler.setFormatter(formatter)
    return handler


def setup_logger(
    name: str,
    log_dir: str = "/var/log/ehr",
    level: str = "INFO",
    file_logging: bool = True,
    console_logging: bool = True,
    filename: Optional[str] = None,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Attach console and rotating file handlers to logger ``name``.

    Args:
        name: Logger name, e.g. ``ehr``
        log_dir: Directory for log files
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL (any case)
        file_logging: Write to ``<log_dir>/<filename>``
        console_logging: Write to stderr
        filename: Log file name, ``<name>.log`` by default
        max_bytes: Size at which the file is rotated
        backup_count: Rotated files to keep

    Returns:
        The configured logger. Calling again for the same name only updates
        the level.
    """
    level_upper = level.upper()
    if level_upper not in _LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of: {', '.join(_LEVELS)}")

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level_upper))
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    if file_logging:
        logger.addHandler(_rotating_file_handler(
            log_dir, filename or f"{name}.log", formatter, max_bytes, backup_count
        ))
    if console_logging:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def configure_logging(settings: "Settings") -> logging.Logger:
    """Configure the application and audit-failure loggers from settings."""
    app_logger = setup_logger(
        "ehr",
        log_dir=settings.log_dir,
        level=settings.log_level,
        file_logging=settings.log_to_file,
    )
    if settings.log_to_file:
        # Console output comes from propagation to ``ehr``
        setup_logger(
            AUDIT_FAILURE_LOGGER,
            log_dir=settings.log_dir,
            level="WARNING",
            console_logging=False,
            filename="audit-failures.log",
        )
    return app_logger
