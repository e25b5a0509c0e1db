"""
Per-Host Politeness Gate.

This module guarantees a minimum wall-clock delay between any two requests
issued to the same hostname, no matter which job or worker issues them.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class GateMetrics:
    """Current politeness gate metrics."""
    min_delay: float
    hosts_tracked: int
    total_requests: int
    total_waits: int
    total_wait_time: float


class PolitenessGate:
    """
    Per-hostname request throttle.

    Features:
    - Minimum delay between consecutive requests to one host
    - Independent hosts never block each other
    - Concurrent waiters for the same host serialize in arrival order

    Each hostname's check-and-stamp runs under that hostname's own lock, and
    the lock is held across the sleep, so a second caller only computes its
    delay once the first caller has been stamped.
    """

    def __init__(
        self,
        min_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the gate.

        Args:
            min_delay: Minimum seconds between requests to the same host
            clock: Monotonic clock in seconds
            sleep: Coroutine used to suspend the caller
        """
        if min_delay < 0:
            raise ValueError("min_delay must not be negative")

        self.min_delay = min_delay
        self._clock = clock
        self._sleep = sleep

        self._last_request: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        # Statistics
        self._total_requests = 0
        self._total_waits = 0
        self._total_wait_time = 0.0

    def _lock_for(self, hostname: str) -> asyncio.Lock:
        lock = self._locks.get(hostname)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[hostname] = lock
        return lock

    async def wait_turn(self, hostname: str) -> float:
        """
        Wait until a request to this hostname is allowed.

        Args:
            hostname: Target host (case-insensitive)

        Returns:
            Time waited (seconds)
        """
        host = hostname.lower()

        async with self._lock_for(host):
            last = self._last_request.get(host)
            wait_time = 0.0

            if last is not None:
                remaining = self.min_delay - (self._clock() - last)
                if remaining > 0:
                    wait_time = remaining
                    logger.debug(f"Politeness delay for {host}: {wait_time:.2f}s")
                    await self._sleep(wait_time)
                    self._total_waits += 1
                    self._total_wait_time += wait_time

            # Stamped when the caller proceeds, not when it arrived
            self._last_request[host] = self._clock()
            self._total_requests += 1
            return wait_time

    def last_request(self, hostname: str) -> Optional[float]:
        """Clock reading of the last request released for a host."""
        return self._last_request.get(hostname.lower())

    @property
    def tracked_hosts(self) -> int:
        """Number of distinct hosts seen so far."""
        return len(self._last_request)

    def get_metrics(self) -> GateMetrics:
        """
        Get current gate metrics.

        Returns:
            GateMetrics snapshot
        """
        return GateMetrics(
            min_delay=self.min_delay,
            hosts_tracked=len(self._last_request),
            total_requests=self._total_requests,
            total_waits=self._total_waits,
            total_wait_time=self._total_wait_time,
        )
