"""CATS: crawl websites and audit every page for accessibility issues."""

__version__ = "0.1.0"

from cats.models import (
    CrawlOutcome,
    CrawlParams,
    CrawlResult,
    Job,
    JobStats,
    JobStatus,
    SubmitResult,
)
from cats.config import settings, SchedulerConfig, CrawlerConfig
from cats.browser_config import BrowserPoolConfig

# Infrastructure
from cats.infrastructure import BrowserPool, PolitenessGate

# Scheduling
from cats.scheduler import (
    JobScheduler,
    JobNotFoundError,
    NothingToCancelError,
    SubprocessCrawlRunner,
    InProcessCrawlRunner,
)

from cats.crawler import SiteAuditCrawler, run_crawl

__all__ = [
    "CrawlOutcome",
    "CrawlParams",
    "CrawlResult",
    "Job",
    "JobStats",
    "JobStatus",
    "SubmitResult",
    "settings",
    "SchedulerConfig",
    "CrawlerConfig",
    "BrowserPoolConfig",
    "BrowserPool",
    "PolitenessGate",
    "JobScheduler",
    "JobNotFoundError",
    "NothingToCancelError",
    "SubprocessCrawlRunner",
    "InProcessCrawlRunner",
    "SiteAuditCrawler",
    "run_crawl",
]
