"""Logging configuration for CATS.

Jobs run concurrently as asyncio tasks named after their job ID
(``dispatch-<id>``, ``crawl-<id>``), so every record is tagged with the name of
the task that emitted it. Errors swallowed on purpose (browser close,
persistence writes, stop signals) go to their own ``cats.suppressed`` logger,
which can be given its own level and file.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Dedicated sink for errors that are deliberately swallowed. See cats.utils.best_effort.
SUPPRESSED_LOGGER_NAME = "cats.suppressed"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(task)s] %(message)s"

# Libraries that log every request at INFO/DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "playwright")


class TaskNameFilter(logging.Filter):
    """Expose the current asyncio task name as ``%(task)s`` ("main" outside tasks)."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None
        record.task = task.get_name() if task is not None else "main"
        return True


def _file_handler(log_file: str) -> logging.FileHandler:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(log_path, encoding="utf-8")


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    suppressed_level: str = "WARNING",
    suppressed_log_file: Optional[str] = None,
) -> None:
    """Configure logging for CATS.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        format_string: Optional custom format string
        suppressed_level: Level of the cats.suppressed logger
        suppressed_log_file: Also write suppressed errors to this file
    """
    format_string = format_string or DEFAULT_FORMAT
    task_filter = TaskNameFilter()

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(_file_handler(log_file))
    for handler in handlers:
        handler.addFilter(task_filter)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=format_string,
        handlers=handlers,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    suppressed = logging.getLogger(SUPPRESSED_LOGGER_NAME)
    suppressed.setLevel(getattr(logging, suppressed_level.upper(), logging.WARNING))
    for handler in list(suppressed.handlers):
        suppressed.removeHandler(handler)
        handler.close()
    if suppressed_log_file:
        handler = _file_handler(suppressed_log_file)
        handler.addFilter(task_filter)
        handler.setFormatter(logging.Formatter(format_string))
        suppressed.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
