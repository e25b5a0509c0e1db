"""
Scheduler Package.

Provides the job scheduler and the runners that start crawl workers.
"""

from .runners import (
    CrawlRunner,
    InProcessCrawlRunner,
    ProcessHandle,
    SubprocessCrawlRunner,
)
from .scheduler import (
    JobNotFoundError,
    JobScheduler,
    NothingToCancelError,
    SweepReport,
)

__all__ = [
    "CrawlRunner",
    "InProcessCrawlRunner",
    "JobNotFoundError",
    "JobScheduler",
    "NothingToCancelError",
    "ProcessHandle",
    "SubprocessCrawlRunner",
    "SweepReport",
]
