"""
Browser Pool Management.

This module keeps a bounded set of reusable Playwright browser processes and
hands out isolated browsing contexts for individual page audits.

Launching a browser is the dominant latency cost of a page audit, so browsers
are reused across visits. Long-lived browsers accumulate memory and become less
reliable, so every browser is retired once it gets too old or has served too
many pages. The pool size is a retention target rather than an admission cap:
when demand exceeds it, extra browsers are launched and closed on release.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from cats.browser_config import BrowserPoolConfig
from cats.utils import best_effort_async, suppressed_logger

logger = logging.getLogger(__name__)


class EntryHealth(Enum):
    """Liveness of a pooled browser."""
    ALIVE = "alive"
    DISCONNECTED = "disconnected"


@dataclass
class PoolStatus:
    """Current status of the browser pool."""
    pool_size: int
    max_pool_size: int
    active_connections: int
    max_connections: int
    checked_out: int = 0
    total_launched: int = 0
    total_retired: int = 0

    def to_dict(self) -> dict:
        return {
            "pool_size": self.pool_size,
            "max_pool_size": self.max_pool_size,
            "active_connections": self.active_connections,
            "max_connections": self.max_connections,
            "checked_out": self.checked_out,
            "total_launched": self.total_launched,
            "total_retired": self.total_retired,
        }


@dataclass
class PoolEntry:
    """A pooled browser process and its usage counters."""
    entry_id: int
    browser: Any
    created_at: float
    pages_served: int = 0
    health: EntryHealth = EntryHealth.ALIVE
    checked_out: bool = False

    def age(self, now: float) -> float:
        """Seconds since the browser was launched."""
        return now - self.created_at


class IsolatedContext:
    """
    Wrapper around a Playwright BrowserContext created by the pool.

    Closing it updates the pool's active-connection count exactly once.
    Anything else is delegated to the wrapped context.
    """

    def __init__(self, context: Any, on_close: Callable[[], None]):
        self._context = context
        self._on_close = on_close
        self._closed = False

    @property
    def context(self) -> Any:
        return self._context

    @property
    def closed(self) -> bool:
        return self._closed

    async def new_page(self):
        """Create a new page in this context."""
        return await self._context.new_page()

    async def close(self) -> None:
        """Close the context. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._context.close()
        finally:
            self._on_close()

    async def __aenter__(self) -> "IsolatedContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await best_effort_async("close browser context", self.close)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._context, name)


class BrowserPool:
    """
    Pool of reusable browser processes.

    Features:
    - Exclusive checkout: an entry is never handed to two callers at once
    - Liveness check on acquire; dead browsers are discarded
    - Retirement by pool size, age and pages served on release
    - Isolated contexts with optional resource blocking
    - Idempotent shutdown

    Usage:
        pool = BrowserPool()
        async with pool.checkout() as entry:
            async with await pool.new_isolated_context(entry) as context:
                page = await context.new_page()
                await page.goto(url)
        await pool.shutdown()
    """

    def __init__(
        self,
        config: Optional[BrowserPoolConfig] = None,
        launcher: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize browser pool.

        Args:
            config: Pool configuration (defaults to BrowserPoolConfig())
            launcher: Coroutine function returning a new browser. Defaults to
                launching Chromium through Playwright.
            clock: Monotonic clock in seconds, used for browser age
        """
        self.config = config or BrowserPoolConfig()
        self._launcher = launcher or self._launch_chromium
        self._clock = clock

        self._playwright = None
        self._playwright_lock = asyncio.Lock()
        self._idle: list[PoolEntry] = []
        self._checked_out: dict[int, PoolEntry] = {}
        self._lock = asyncio.Lock()
        self._shut_down = False

        self._next_entry_id = 0
        self._active_connections = 0
        self._total_launched = 0
        self._total_retired = 0

    async def __aenter__(self) -> "BrowserPool":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    async def _launch_chromium(self) -> Any:
        """Launch Chromium through Playwright, starting Playwright on first use."""
        async with self._playwright_lock:
            if self._playwright is None:
                try:
                    from playwright.async_api import async_playwright
                except ImportError:
                    raise ImportError(
                        "playwright package not installed. "
                        "Install with: pip install playwright && playwright install chromium"
                    )
                self._playwright = await async_playwright().start()

        return await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=self.config.launch_args(),
            timeout=self.config.launch_timeout_ms,
        )

    async def _launch_entry(self) -> PoolEntry:
        """Launch a browser and wrap it as a pool entry."""
        logger.info(
            f"Launching new browser instance "
            f"(pool size: {len(self._idle)}/{self.config.max_pool_size})"
        )
        try:
            browser = await self._launcher()
        except Exception as e:
            logger.error(f"Failed to launch browser: {e}")
            raise

        entry_id = self._next_entry_id
        self._next_entry_id += 1
        self._total_launched += 1

        return PoolEntry(entry_id=entry_id, browser=browser, created_at=self._clock())

    async def _is_alive(self, entry: PoolEntry) -> bool:
        """Lightweight liveness check of a pooled browser."""
        try:
            if not entry.browser.is_connected():
                return False
            _ = entry.browser.version
        except Exception as e:
            logger.debug(f"Liveness check failed for browser {entry.entry_id}: {e}")
            return False
        return True

    def _is_connected(self, entry: PoolEntry) -> bool:
        if entry.health is EntryHealth.DISCONNECTED:
            return False
        try:
            return bool(entry.browser.is_connected())
        except Exception:
            return False

    async def _close_entry(self, entry: PoolEntry, reason: str) -> None:
        """Close a browser, logging instead of raising on failure."""
        self._total_retired += 1
        logger.info(
            f"Closing browser {entry.entry_id} ({reason}; "
            f"runtime: {int(entry.age(self._clock()))}s, pages: {entry.pages_served})"
        )
        _ = await best_effort_async(f"close browser {entry.entry_id}", entry.browser.close)

    async def acquire(self) -> PoolEntry:
        """
        Check out a browser from the pool, launching one if none is usable.

        Returns:
            A PoolEntry reserved for the caller until release()

        Raises:
            RuntimeError: If the pool has been shut down
        """
        if self._shut_down:
            raise RuntimeError("Browser pool is shut down")

        entry: Optional[PoolEntry] = None
        async with self._lock:
            if self._idle:
                entry = self._idle.pop()
                entry.checked_out = True

        if entry is not None:
            if await self._is_alive(entry):
                entry.pages_served += 1
                self._checked_out[entry.entry_id] = entry
                return entry

            logger.warning(f"Browser {entry.entry_id} disconnected, launching new one")
            entry.health = EntryHealth.DISCONNECTED
            entry.checked_out = False
            await self._close_entry(entry, "disconnected")

        entry = await self._launch_entry()
        entry.checked_out = True
        entry.pages_served = 1
        self._checked_out[entry.entry_id] = entry
        return entry

    def _retire_reason(self, entry: PoolEntry) -> Optional[str]:
        """Why a released entry must be closed rather than pooled, if at all."""
        if self._shut_down:
            return "pool shut down"
        if not self._is_connected(entry):
            return "disconnected"
        if len(self._idle) >= self.config.max_pool_size:
            return "pool full"
        if entry.age(self._clock()) > self.config.max_lifetime_seconds:
            return "max lifetime exceeded"
        if entry.pages_served > self.config.max_pages_per_browser:
            return "max pages exceeded"
        return None

    async def release(self, entry: Optional[PoolEntry]) -> bool:
        """
        Return a browser to the pool or retire it.

        Args:
            entry: Entry obtained from acquire()

        Returns:
            True if the entry went back to the idle set, False if it was closed
            or ignored
        """
        if entry is None:
            return False

        async with self._lock:
            if not entry.checked_out:
                logger.warning(f"Ignoring release of browser {entry.entry_id}: not checked out")
                return False

            entry.checked_out = False
            self._checked_out.pop(entry.entry_id, None)

            reason = self._retire_reason(entry)
            if reason is None:
                self._idle.append(entry)
                return True

            if reason == "disconnected":
                entry.health = EntryHealth.DISCONNECTED

        await self._close_entry(entry, reason)
        return False

    @asynccontextmanager
    async def checkout(self):
        """
        Acquire a browser for the duration of a block.

        Usage:
            async with pool.checkout() as entry:
                ...

        Yields:
            PoolEntry
        """
        entry = await self.acquire()
        try:
            yield entry
        finally:
            await self.release(entry)

    async def new_isolated_context(self, entry: PoolEntry) -> IsolatedContext:
        """
        Create a fresh browsing context (own cookies and storage) on a pooled browser.

        Args:
            entry: A checked-out pool entry

        Returns:
            IsolatedContext wrapping the Playwright BrowserContext
        """
        self._active_connections += 1

        try:
            context = await entry.browser.new_context(**self.config.context_options())

            blocked = self.config.blocked_resource_types()
            if blocked:
                async def _filter(route):
                    if route.request.resource_type in blocked:
                        await route.abort()
                    else:
                        await route.continue_()

                await context.route("**/*", _filter)
        except Exception:
            self._active_connections = max(0, self._active_connections - 1)
            raise

        return IsolatedContext(context, self._on_context_closed)

    def _on_context_closed(self) -> None:
        self._active_connections = max(0, self._active_connections - 1)

    async def shutdown(self) -> list[Exception]:
        """
        Close every idle browser and stop Playwright.

        Safe to call more than once. Browsers still checked out are closed
        when they are released.

        Returns:
            Errors raised while closing (already logged)
        """
        async with self._lock:
            self._shut_down = True
            entries = list(self._idle)
            self._idle.clear()

        if entries:
            logger.info(f"Cleaning up browser pool ({len(entries)} browsers)")

        async def _close(entry: PoolEntry) -> None:
            await entry.browser.close()

        results = await asyncio.gather(*(_close(e) for e in entries), return_exceptions=True)
        errors = [r for r in results if isinstance(r, Exception)]
        for error in errors:
            suppressed_logger.warning(f"Error closing browser: {error}")

        self._total_retired += len(entries)
        self._active_connections = 0

        if self._playwright is not None:
            _ = await best_effort_async("stop playwright", self._playwright.stop)
            self._playwright = None

        return errors

    def get_status(self) -> PoolStatus:
        """Get current pool status for monitoring."""
        return PoolStatus(
            pool_size=len(self._idle),
            max_pool_size=self.config.max_pool_size,
            active_connections=self._active_connections,
            max_connections=self.config.max_connections,
            checked_out=len(self._checked_out),
            total_launched=self._total_launched,
            total_retired=self._total_retired,
        )

    @property
    def idle_count(self) -> int:
        """Number of idle browsers ready for reuse."""
        return len(self._idle)

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down
