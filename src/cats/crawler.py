"""Site crawler running an accessibility audit on every visited page."""

import asyncio
import json
import logging
import random
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx

from cats.audit import AxeAuditEngine
from cats.browser_config import BrowserPoolConfig
from cats.config import CrawlerConfig, generate_report_filename, get_domain_reports_dir
from cats.constants import MAX_BACKOFF_DELAY_SECONDS, NON_RETRYABLE_ERROR_PATTERNS
from cats.infrastructure import BrowserPool, PolitenessGate
from cats.models import CrawlParams, CrawlResult
from cats.sitemap import SitemapDiscovery
from cats.utils import best_effort_async, hostname_of, is_http_url, is_same_host, normalize_url
from cats.wcag import build_axe_tags

logger = logging.getLogger(__name__)

EXTRACT_LINKS_SCRIPT = "nodes => nodes.map(n => n.href)"


class CrawlAbortedError(Exception):
    """Raised when a crawl cannot start or continue at all."""


@dataclass
class PageFailure:
    """A page that could not be audited."""
    url: str
    error: str
    error_type: str
    retries: int

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "error": self.error,
            "error_type": self.error_type,
            "retries": self.retries,
        }


class SiteAuditCrawler:
    """
    Crawl one site and audit every page with axe-core.

    Pages come from the site's sitemap when one exists (sitemap mode) or are
    discovered by following same-host links breadth-first up to max_depth
    (discovery mode). Every navigation waits for its turn at the politeness
    gate and runs in a fresh isolated context on a pooled browser.
    """

    def __init__(
        self,
        params: CrawlParams,
        pool: BrowserPool,
        gate: PolitenessGate,
        engine: AxeAuditEngine,
        config: Optional[CrawlerConfig] = None,
        sitemap: Optional[SitemapDiscovery] = None,
    ):
        """
        Initialize the crawler.

        Args:
            params: What to crawl and which ruleset to apply
            pool: Browser pool shared with other crawls
            gate: Politeness gate shared with other crawls
            engine: Audit engine run on every page
            config: Crawler settings (defaults to CrawlerConfig())
            sitemap: Sitemap discovery (created from config if omitted)
        """
        self.params = params
        self.pool = pool
        self.gate = gate
        self.engine = engine
        self.config = config or CrawlerConfig()
        self.sitemap = sitemap or SitemapDiscovery(
            timeout=self.config.sitemap_timeout,
            user_agent=self.config.user_agent,
        )

        self.seed = normalize_url(params.url)
        self.concurrency = max(1, params.concurrency)
        self.semaphore = asyncio.Semaphore(self.concurrency)

        self.queue: Deque[Tuple[str, int]] = deque()
        self.seen: Set[str] = set()
        self.results: List[Dict[str, Any]] = []
        self.failures: List[PageFailure] = []
        self.using_sitemap = False

        self._robots: Optional[RobotFileParser] = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def _load_robots_txt(self) -> None:
        """Fetch and parse robots.txt of the seed host. Missing robots.txt allows all."""
        parsed = urlparse(self.seed)
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"

        try:
            async with httpx.AsyncClient(
                timeout=self.config.robots_timeout, follow_redirects=True
            ) as client:
                response = await client.get(
                    robots_url,
                    headers={"User-Agent": self.config.user_agent, "Accept": "text/plain,*/*"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"Could not load robots.txt: {e}")
            return

        if response.status_code != 200:
            logger.info(f"No robots.txt found at {robots_url} (status: {response.status_code})")
            return

        parser = RobotFileParser()
        parser.set_url(robots_url)
        parser.parse(response.text.splitlines())
        self._robots = parser
        logger.info(f"Loaded robots.txt from {robots_url}")

    def can_crawl(self, url: str) -> bool:
        """Check if robots.txt allows the URL."""
        if not self.config.respect_robots or self._robots is None:
            return True
        return self._robots.can_fetch(self.config.user_agent, url)

    async def _seed_queue(self) -> None:
        if self.params.use_sitemap:
            limit = None if self.params.unlimited_pages else self.params.max_pages
            urls = await self.sitemap.discover(self.seed, max_urls=limit)
            if urls:
                self.using_sitemap = True
                for url in urls:
                    self._enqueue(url, 0)
                logger.info(f"Using sitemap with {len(urls)} URLs")
                return
            logger.info(f"Falling back to discovery crawling from {self.seed}")
        else:
            logger.info(f"Discovery crawling from {self.seed} (sitemap disabled)")

        self._enqueue(self.seed, 0)

    def _enqueue(self, url: str, depth: int) -> None:
        if url in self.seen:
            return
        self.seen.add(url)
        self.queue.append((url, depth))

    def _limit_reached(self) -> bool:
        return not self.params.unlimited_pages and len(self.results) >= self.params.max_pages

    # ------------------------------------------------------------------
    # Crawl loop
    # ------------------------------------------------------------------

    async def crawl(self) -> List[Dict[str, Any]]:
        """
        Visit and audit pages until the queue is empty or the page cap is hit.

        Returns:
            One audit result per successfully visited page

        Raises:
            CrawlAbortedError: If the seed URL cannot be crawled
        """
        if not is_http_url(self.seed) or hostname_of(self.seed) is None:
            raise CrawlAbortedError(f"Not an http(s) URL: {self.params.url}")

        await self._load_robots_txt()
        await self._seed_queue()

        while self.queue and not self._limit_reached():
            batch = []
            while self.queue and len(batch) < self.concurrency:
                url, depth = self.queue.popleft()
                if not self.can_crawl(url):
                    logger.warning(f"Skipping {url} (disallowed by robots.txt)")
                    continue
                batch.append((url, depth))

            if not batch:
                continue

            await asyncio.gather(*(self._crawl_page(url, depth) for url, depth in batch))

            if self.params.unlimited_pages:
                logger.info(f"Progress: {len(self.results)} pages scanned, {len(self.queue)} remaining")
            else:
                logger.info(
                    f"Progress: {len(self.results)} pages scanned, {len(self.queue)} remaining "
                    f"(max: {self.params.max_pages})"
                )

        if self._limit_reached():
            logger.info(f"Reached maximum page limit ({self.params.max_pages}), stopping crawl")
            # A batch may overshoot the cap
            del self.results[self.params.max_pages:]

        mode = "sitemap" if self.using_sitemap else "discovery"
        logger.info(f"Crawled {len(self.results)} pages using {mode} mode")
        return self.results

    async def _crawl_page(self, url: str, depth: int) -> None:
        """Visit one page with retries, recording its result or failure."""
        async with self.semaphore:
            attempt = 0
            while True:
                if self._limit_reached():
                    return
                try:
                    links = await self._visit(url)
                    break
                except Exception as e:
                    if not self.should_retry(e, attempt):
                        self._record_failure(url, e, attempt)
                        return
                    delay = self.calculate_backoff_delay(attempt)
                    attempt += 1
                    logger.info(
                        f"Will retry ({attempt}/{self.config.max_retries}) after {delay:.1f}s: {url}"
                    )
                    await asyncio.sleep(delay)

        if self.using_sitemap or depth >= self.params.max_depth:
            return
        for link in links:
            if is_http_url(link) and is_same_host(link, self.seed):
                self._enqueue(normalize_url(link), depth + 1)

    async def _visit(self, url: str) -> List[str]:
        """Navigate to a page in a fresh context, audit it and return its links."""
        await self.gate.wait_turn(hostname_of(url) or "")

        entry = await self.pool.acquire()
        try:
            context = await self.pool.new_isolated_context(entry)
            try:
                page = await context.new_page()
                await page.goto(
                    url,
                    wait_until=self.config.wait_strategy,
                    timeout=self.config.page_timeout_ms,
                )
                result = await self.engine.audit(page)
                result["timestamp"] = datetime.now().isoformat()

                links: List[str] = []
                if not self.using_sitemap:
                    links = await page.eval_on_selector_all("a[href]", EXTRACT_LINKS_SCRIPT)
            finally:
                _ = await best_effort_async("close browser context", context.close)
        finally:
            await self.pool.release(entry)

        if not self._limit_reached():
            self.results.append(result)
            violations = len(result.get("violations", []))
            logger.info(f"Audited {url} ({violations} violations)")
        return links

    def calculate_backoff_delay(self, retry_count: int) -> float:
        """Exponential backoff with ±25% jitter.

        Args:
            retry_count: Number of retries already attempted (0-indexed)

        Returns:
            Delay in seconds before the next attempt
        """
        delay = (self.config.retry_delay_ms / 1000) * (2 ** retry_count)
        delay = min(delay, MAX_BACKOFF_DELAY_SECONDS)
        return delay + delay * random.uniform(-0.25, 0.25)

    def should_retry(self, error: Exception, retry_count: int) -> bool:
        """Decide whether a failed visit is worth another attempt."""
        if retry_count >= self.config.max_retries:
            return False
        error_str = str(error).lower()
        return not any(pattern in error_str for pattern in NON_RETRYABLE_ERROR_PATTERNS)

    def _record_failure(self, url: str, error: Exception, retries: int) -> None:
        self.failures.append(PageFailure(
            url=url,
            error=str(error)[:500],
            error_type=type(error).__name__,
            retries=retries,
        ))
        logger.warning(f"Failed {url} after {retries} retries: {error}")

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def default_report_path(self) -> Path:
        domain = self.params.domain
        filename = generate_report_filename(domain, self.params.wcag_version, self.params.wcag_level)
        return get_domain_reports_dir(domain, self.config.reports_dir) / filename

    def write_report(self, output_path: Optional[Path] = None) -> Path:
        """Write the page results as a JSON array and return the file path."""
        path = Path(output_path) if output_path else self.default_report_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.results, f, indent=2, default=str)
        logger.info(f"JSON report: {path}")
        return path

    async def run(self, output_path: Optional[Path] = None) -> CrawlResult:
        """Crawl, write the report and summarise."""
        await self.crawl()
        report_path = self.write_report(output_path)
        return CrawlResult(
            pages_visited=len(self.results),
            report_location=str(report_path),
            pages_failed=len(self.failures),
        )


async def run_crawl(
    params: CrawlParams,
    config: Optional[CrawlerConfig] = None,
    pool: Optional[BrowserPool] = None,
    gate: Optional[PolitenessGate] = None,
    pool_config: Optional[BrowserPoolConfig] = None,
    output_path: Optional[Path] = None,
) -> CrawlResult:
    """
    Run one complete crawl.

    A pool or gate passed in is shared and left running; otherwise private
    ones are created and the pool is shut down when the crawl ends.

    Args:
        params: Crawl parameters
        config: Crawler settings (defaults to CrawlerConfig.from_env())
        pool: Shared browser pool
        gate: Shared politeness gate
        pool_config: Configuration for a private pool
        output_path: Report path (defaults to the domain reports directory)

    Returns:
        CrawlResult with the number of audited pages and the report path
    """
    config = config or CrawlerConfig.from_env()
    gate = gate or PolitenessGate(min_delay=config.per_domain_delay)
    engine = AxeAuditEngine(
        tags=build_axe_tags(params.wcag_version, params.wcag_level, params.custom_tags),
        script_path=config.axe_script_path,
        script_url=config.axe_script_url,
    )

    owns_pool = pool is None
    if owns_pool:
        pool = BrowserPool(pool_config or BrowserPoolConfig.from_env())

    try:
        crawler = SiteAuditCrawler(params, pool, gate, engine, config)
        return await crawler.run(output_path)
    finally:
        if owns_pool:
            await pool.shutdown()
