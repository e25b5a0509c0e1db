"""
Infrastructure Package.

Provides browser pooling and per-host politeness for reliable parallel crawling.
"""

from .browser_pool import (
    BrowserPool,
    EntryHealth,
    IsolatedContext,
    PoolEntry,
    PoolStatus,
)
from .rate_limiter import (
    GateMetrics,
    PolitenessGate,
)

__all__ = [
    # Browser Pool
    "BrowserPool",
    "EntryHealth",
    "IsolatedContext",
    "PoolEntry",
    "PoolStatus",
    # Politeness Gate
    "GateMetrics",
    "PolitenessGate",
]
