"""
Best-effort execution.

Browser close calls, persistence writes and stop signals may fail without
affecting scheduling correctness. These helpers run such an operation, log any
failure to the dedicated ``cats.suppressed`` logger, and hand the error back so
the call site discards it explicitly:

    _ = best_effort("persist job start", store.record_started, job)
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from cats.logging_config import SUPPRESSED_LOGGER_NAME

suppressed_logger = logging.getLogger(SUPPRESSED_LOGGER_NAME)


def best_effort(
    description: str,
    operation: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> Optional[Exception]:
    """Run a synchronous operation, logging instead of raising on failure.

    Args:
        description: Short human-readable name of the operation
        operation: Callable to invoke
        *args: Positional arguments for the operation
        **kwargs: Keyword arguments for the operation

    Returns:
        The exception raised by the operation, or None on success
    """
    try:
        operation(*args, **kwargs)
    except Exception as e:
        suppressed_logger.warning(f"Failed to {description}: {e}")
        return e
    return None


async def best_effort_async(
    description: str,
    operation: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> Optional[Exception]:
    """Await an async operation, logging instead of raising on failure.

    Returns:
        The exception raised by the operation, or None on success
    """
    try:
        await operation(*args, **kwargs)
    except Exception as e:
        suppressed_logger.warning(f"Failed to {description}: {e}")
        return e
    return None
