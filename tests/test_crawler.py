# tests/test_crawler.py
"""Tests for the site audit crawler.

Browsers, pages and the audit engine are fakes; the politeness gate is real
with a zero delay.
"""

import json
from unittest.mock import AsyncMock
from urllib.robotparser import RobotFileParser

import httpx
import pytest

from cats.config import CrawlerConfig
from cats.crawler import CrawlAbortedError, SiteAuditCrawler, run_crawl
from cats.infrastructure import PolitenessGate
from cats.models import CrawlParams, CrawlResult

LOAD_ROBOTS_TXT = SiteAuditCrawler._load_robots_txt

# Link graph of the fake site: url -> hrefs found on the page
SITE = {
    "https://example.com": [
        "https://example.com/about",
        "https://example.com/contact/",
        "https://example.com/#main",
        "https://other.org/elsewhere",
        "mailto:hello@example.com",
    ],
    "https://example.com/about": ["https://example.com/team", "https://example.com"],
    "https://example.com/contact": ["https://example.com/privacy"],
    "https://example.com/team": ["https://example.com/team/alice"],
    "https://example.com/privacy": [],
    "https://example.com/team/alice": [],
}


class FakePage:
    def __init__(self, site, failures):
        self.site = site
        self.failures = failures
        self.url = None

    async def goto(self, url, wait_until=None, timeout=None):
        remaining = self.failures.get(url, 0)
        if remaining:
            self.failures[url] = remaining - 1
            raise TimeoutError(f"Timeout 90000ms exceeded navigating to {url}")
        if url not in self.site:
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.url = url

    async def eval_on_selector_all(self, selector, script):
        return list(self.site[self.url])


class FakeContext:
    def __init__(self, pool):
        self.pool = pool

    async def new_page(self):
        return FakePage(self.pool.site, self.pool.failures)

    async def close(self):
        self.pool.contexts_closed += 1


class FakePool:
    """Stands in for BrowserPool; counts checkouts so leaks are visible."""

    def __init__(self, site=None, failures=None):
        self.site = site if site is not None else SITE
        self.failures = failures or {}
        self.checked_out = 0
        self.contexts_closed = 0
        self.acquired = 0

    async def acquire(self):
        self.checked_out += 1
        self.acquired += 1
        return object()

    async def new_isolated_context(self, entry):
        return FakeContext(self)

    async def release(self, entry):
        self.checked_out -= 1
        return True


class FakeEngine:
    async def audit(self, page):
        return {"pageUrl": page.url, "pageTitle": "", "violations": [{"id": "color-contrast"}]}


class StubSitemap:
    def __init__(self, urls=None):
        self.urls = urls or []
        self.calls = []

    async def discover(self, seed_url, max_urls=None):
        self.calls.append((seed_url, max_urls))
        return list(self.urls)


@pytest.fixture(autouse=True)
def no_robots(monkeypatch):
    """Keep tests off the network: robots.txt is treated as missing."""
    monkeypatch.setattr(SiteAuditCrawler, "_load_robots_txt", AsyncMock())


@pytest.fixture
def config(tmp_path):
    return CrawlerConfig(max_retries=2, retry_delay_ms=0, reports_dir=tmp_path)


def make_crawler(config, pool=None, sitemap=None, **params):
    params.setdefault("url", "https://example.com/")
    params.setdefault("use_sitemap", False)
    return SiteAuditCrawler(
        CrawlParams(**params),
        pool or FakePool(),
        PolitenessGate(min_delay=0),
        FakeEngine(),
        config,
        sitemap or StubSitemap(),
    )


def visited(crawler):
    return [result["pageUrl"] for result in crawler.results]


# =============================================================================
# Discovery mode
# =============================================================================

class TestDiscoveryCrawl:
    @pytest.mark.asyncio
    async def test_breadth_first_same_host_within_depth(self, config):
        crawler = make_crawler(config, max_depth=1)

        await crawler.crawl()

        assert sorted(visited(crawler)) == [
            "https://example.com",
            "https://example.com/about",
            "https://example.com/contact",
        ]
        assert crawler.using_sitemap is False

    @pytest.mark.asyncio
    async def test_deeper_crawl_reaches_every_page_once(self, config):
        crawler = make_crawler(config, max_depth=5, max_pages=0)

        await crawler.crawl()

        assert sorted(visited(crawler)) == sorted(SITE)
        assert len(visited(crawler)) == len(set(visited(crawler)))

    @pytest.mark.asyncio
    async def test_page_cap(self, config):
        crawler = make_crawler(config, max_depth=5, max_pages=2, concurrency=4)

        await crawler.crawl()

        assert len(crawler.results) == 2

    @pytest.mark.asyncio
    async def test_zero_concurrency_still_crawls(self, config):
        crawler = make_crawler(config, max_depth=0, concurrency=0)

        await crawler.crawl()

        assert visited(crawler) == ["https://example.com"]

    @pytest.mark.asyncio
    async def test_every_checkout_is_released(self, config):
        pool = FakePool(failures={"https://example.com/about": 10})
        crawler = make_crawler(config, pool=pool, max_depth=2)

        await crawler.crawl()

        assert pool.checked_out == 0
        assert pool.contexts_closed == pool.acquired

    @pytest.mark.asyncio
    async def test_non_http_seed_aborts(self, config):
        crawler = make_crawler(config, url="ftp://example.com")

        with pytest.raises(CrawlAbortedError):
            await crawler.crawl()

    @pytest.mark.asyncio
    async def test_robots_disallowed_pages_are_skipped(self, config):
        crawler = make_crawler(config, max_depth=1)
        robots = RobotFileParser()
        robots.parse(["User-agent: *", "Disallow: /contact"])
        crawler._robots = robots

        await crawler.crawl()

        assert "https://example.com/contact" not in visited(crawler)
        assert "https://example.com/about" in visited(crawler)

    @pytest.mark.asyncio
    async def test_robots_ignored_when_disabled(self, tmp_path):
        config = CrawlerConfig(respect_robots=False, reports_dir=tmp_path)
        crawler = make_crawler(config)
        robots = RobotFileParser()
        robots.parse(["User-agent: *", "Disallow: /"])
        crawler._robots = robots

        assert crawler.can_crawl("https://example.com/about") is True


# =============================================================================
# Sitemap mode
# =============================================================================

class TestSitemapCrawl:
    @pytest.mark.asyncio
    async def test_sitemap_urls_are_audited_without_following_links(self, config):
        sitemap = StubSitemap(["https://example.com/privacy", "https://example.com/team"])
        crawler = make_crawler(config, sitemap=sitemap, use_sitemap=True, max_pages=10)

        await crawler.crawl()

        assert sorted(visited(crawler)) == ["https://example.com/privacy", "https://example.com/team"]
        assert crawler.using_sitemap is True
        assert sitemap.calls == [("https://example.com", 10)]

    @pytest.mark.asyncio
    async def test_empty_sitemap_falls_back_to_discovery(self, config):
        crawler = make_crawler(config, sitemap=StubSitemap(), use_sitemap=True, max_depth=0)

        await crawler.crawl()

        assert visited(crawler) == ["https://example.com"]
        assert crawler.using_sitemap is False

    @pytest.mark.asyncio
    async def test_unlimited_pages_requests_whole_sitemap(self, config):
        sitemap = StubSitemap(["https://example.com/privacy"])
        crawler = make_crawler(config, sitemap=sitemap, use_sitemap=True, max_pages=0)

        await crawler.crawl()

        assert sitemap.calls == [("https://example.com", None)]


# =============================================================================
# Retries
# =============================================================================

class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, config):
        pool = FakePool(failures={"https://example.com": 2})
        crawler = make_crawler(config, pool=pool, max_depth=0)

        await crawler.crawl()

        assert visited(crawler) == ["https://example.com"]
        assert crawler.failures == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, config):
        pool = FakePool(failures={"https://example.com": 5})
        crawler = make_crawler(config, pool=pool, max_depth=0)

        await crawler.crawl()

        assert crawler.results == []
        assert len(crawler.failures) == 1
        failure = crawler.failures[0]
        assert failure.retries == 2
        assert failure.error_type == "TimeoutError"

    @pytest.mark.asyncio
    async def test_dns_errors_are_not_retried(self, config):
        site = {"https://example.com": ["https://example.com/missing"]}
        crawler = make_crawler(config, pool=FakePool(site=site), max_depth=1)

        await crawler.crawl()

        assert visited(crawler) == ["https://example.com"]
        assert crawler.failures[0].url == "https://example.com/missing"
        assert crawler.failures[0].retries == 0

    def test_should_retry(self, config):
        crawler = make_crawler(config)

        assert crawler.should_retry(TimeoutError("Timeout 30000ms exceeded"), 0)
        assert not crawler.should_retry(TimeoutError("Timeout"), 2)
        assert not crawler.should_retry(RuntimeError("net::ERR_CONNECTION_REFUSED"), 0)

    def test_backoff_is_exponential_with_jitter_and_capped(self, tmp_path):
        crawler = make_crawler(CrawlerConfig(retry_delay_ms=2000, reports_dir=tmp_path))

        for retry_count, base in [(0, 2.0), (1, 4.0), (2, 8.0), (10, 30.0)]:
            delay = crawler.calculate_backoff_delay(retry_count)
            assert base * 0.75 <= delay <= base * 1.25


# =============================================================================
# Report and entry point
# =============================================================================

class TestReport:
    @pytest.mark.asyncio
    async def test_run_writes_json_array(self, config, tmp_path):
        crawler = make_crawler(config, max_depth=1)
        output = tmp_path / "nested" / "report.json"

        result = await crawler.run(output)

        assert isinstance(result, CrawlResult)
        assert result.pages_visited == 3
        assert result.report_location == str(output)
        pages = json.loads(output.read_text(encoding="utf-8"))
        assert len(pages) == 3
        assert {"pageUrl", "violations", "timestamp"} <= set(pages[0])

    def test_default_report_path(self, config, tmp_path):
        crawler = make_crawler(config, max_depth=0, wcag_version="2.2", wcag_level="A")

        path = crawler.write_report()

        assert path.parent == tmp_path / "example.com"
        assert path.name.startswith("example.com_wcag2.2_A_")
        assert json.loads(path.read_text(encoding="utf-8")) == []

    @pytest.mark.asyncio
    async def test_run_crawl_leaves_shared_pool_running(self, config, tmp_path, monkeypatch):
        monkeypatch.setattr(SiteAuditCrawler, "_seed_queue", AsyncMock())
        pool = FakePool()
        pool.shutdown = AsyncMock()

        result = await run_crawl(
            CrawlParams(url="https://example.com", use_sitemap=False),
            config=config,
            pool=pool,
            gate=PolitenessGate(min_delay=0),
            output_path=tmp_path / "r.json",
        )

        assert result.pages_visited == 0
        pool.shutdown.assert_not_awaited()


# =============================================================================
# robots.txt
# =============================================================================

class TestRobotsTxt:
    @pytest.fixture
    def robots_client(self, monkeypatch):
        """Route the crawler's httpx client through a mock transport."""
        responses = {}
        real_client = httpx.AsyncClient

        def handler(request):
            status, body = responses.get(str(request.url), (404, ""))
            return httpx.Response(status, text=body)

        def client_factory(**kwargs):
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        monkeypatch.setattr("cats.crawler.httpx.AsyncClient", client_factory)
        return responses

    @pytest.mark.asyncio
    async def test_robots_rules_loaded(self, config, robots_client):
        robots_client["https://example.com/robots.txt"] = (200, "User-agent: *\nDisallow: /private\n")
        crawler = make_crawler(config)

        await LOAD_ROBOTS_TXT(crawler)

        assert crawler.can_crawl("https://example.com/about")
        assert not crawler.can_crawl("https://example.com/private/report")

    @pytest.mark.asyncio
    async def test_missing_robots_allows_everything(self, config, robots_client):
        crawler = make_crawler(config)

        await LOAD_ROBOTS_TXT(crawler)

        assert crawler._robots is None
        assert crawler.can_crawl("https://example.com/private")
