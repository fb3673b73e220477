"""Logging configuration for the site crawler."""

import logging
import sys
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Client libraries that log every request at INFO
QUIET_LOGGERS = ('httpx', 'httpcore')


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> None:
    """Configure console (and optionally file) logging for a crawl run.

    Args:
        level: Log level name; unknown names fall back to INFO
        log_file: Also write records here; parent directories are created
        format_string: Record format, defaults to DEFAULT_FORMAT
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=format_string or DEFAULT_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get the logger for a crawler module or component.

    Args:
        name: Logger name (usually __name__)
    """
    return logging.getLogger(name)
