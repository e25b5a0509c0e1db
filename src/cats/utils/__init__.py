"""
Utilities Package.

Provides the best-effort execution helpers used wherever an error must be
recorded but never allowed to interrupt the caller, and URL helpers.
"""

from .best_effort import (
    best_effort,
    best_effort_async,
    suppressed_logger,
)
from .urls import (
    hostname_of,
    is_http_url,
    is_same_host,
    normalize_url,
)

__all__ = [
    "best_effort",
    "best_effort_async",
    "suppressed_logger",
    "hostname_of",
    "is_http_url",
    "is_same_host",
    "normalize_url",
]
