"""
Crawl runners.

A runner starts the crawl worker for one job, can be asked to stop it, and
reports how it terminated. The scheduler only ever talks to this interface,
so it never needs to know whether the worker is a child process or a task.
"""

import asyncio
import json
import logging
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from cats.config import generate_report_filename, get_domain_reports_dir
from cats.constants import DEFAULT_CHILD_OUTPUT_LIMIT_BYTES
from cats.models import CrawlOutcome, CrawlParams, CrawlResult, Job

logger = logging.getLogger(__name__)

# Line printed by `cats crawl` on success; parsed by SubprocessCrawlRunner
RESULT_MARKER = "CATS_RESULT "


class CrawlRunner(ABC):
    """Start, stop and await crawl workers."""

    @abstractmethod
    async def start(self, job: Job) -> Any:
        """Start the worker for a job and return its handle."""
        pass

    @abstractmethod
    def request_stop(self, handle: Any) -> None:
        """Ask a worker to stop. Returns once the signal is sent."""
        pass

    @abstractmethod
    async def wait(self, handle: Any) -> CrawlOutcome:
        """Wait for the worker to terminate and report the outcome."""
        pass


@dataclass
class ProcessHandle:
    """A running `cats crawl` child process."""
    job_id: str
    process: asyncio.subprocess.Process
    report_path: Path
    pumps: list = field(default_factory=list)
    result: Optional[dict] = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid


class SubprocessCrawlRunner(CrawlRunner):
    """
    Run every crawl in its own `python -m cats crawl` process.

    Output lines of the child are forwarded to this process' log, tagged with
    the job ID. Stopping a job sends SIGTERM.
    """

    def __init__(
        self,
        python_executable: Optional[str] = None,
        reports_dir: Optional[Path] = None,
        per_domain_delay: Optional[float] = None,
        log_level: str = "INFO",
        output_limit: int = DEFAULT_CHILD_OUTPUT_LIMIT_BYTES,
    ):
        """
        Args:
            python_executable: Interpreter used for the child (defaults to sys.executable)
            reports_dir: Base reports directory passed to children
            per_domain_delay: Politeness delay override passed to children
            log_level: Log level of the child process
            output_limit: Longest child output line kept, in bytes. Longer
                lines are dropped without stalling the pipe.
        """
        self.python_executable = python_executable or sys.executable
        self.reports_dir = reports_dir
        self.per_domain_delay = per_domain_delay
        self.log_level = log_level
        self.output_limit = output_limit

    def report_path_for(self, job: Job) -> Path:
        """Where the child writes the JSON report of a job."""
        params = job.params
        filename = generate_report_filename(
            params.domain,
            params.wcag_version,
            params.wcag_level,
            now=job.started_at,
            suffix=job.job_id[:8],
        )
        return get_domain_reports_dir(params.domain, self.reports_dir) / filename

    def build_command(self, params: CrawlParams, report_path: Path) -> list[str]:
        """Build the argument vector of the child process."""
        command = [
            self.python_executable, "-m", "cats",
            "--log-level", self.log_level,
            "crawl",
            "--seed", params.url,
            "--depth", str(params.max_depth),
            "--max-pages", str(params.max_pages),
            "--concurrency", str(params.concurrency),
            "--wcag-version", params.wcag_version,
            "--wcag-level", params.wcag_level,
            "--output", str(report_path),
        ]
        if params.custom_tags:
            command.extend(["--custom-tags", ",".join(params.custom_tags)])
        if not params.use_sitemap:
            command.append("--no-sitemap")
        if self.per_domain_delay is not None:
            command.extend(["--delay", str(self.per_domain_delay)])
        return command

    async def start(self, job: Job) -> ProcessHandle:
        report_path = self.report_path_for(job)
        command = self.build_command(job.params, report_path)

        logger.info(f"Starting crawler for job {job.job_id}: {job.params.url}")
        logger.debug(f"Crawler command: {' '.join(command)}")

        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=self.output_limit,
        )
        handle = ProcessHandle(job_id=job.job_id, process=process, report_path=report_path)
        handle.pumps = [
            asyncio.create_task(self._pump(handle, process.stdout, logging.INFO)),
            asyncio.create_task(self._pump(handle, process.stderr, logging.WARNING)),
        ]
        return handle

    async def _pump(self, handle: ProcessHandle, stream, level: int) -> None:
        """Forward child output to the log until EOF."""
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except (ValueError, asyncio.LimitOverrunError):
                # readline() already discarded the buffered part of the line
                logger.warning(
                    f"[{handle.job_id}] Dropped output line longer than {self.output_limit} bytes"
                )
                continue
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            if line.startswith(RESULT_MARKER):
                try:
                    handle.result = json.loads(line[len(RESULT_MARKER):])
                except json.JSONDecodeError:
                    logger.warning(f"[{handle.job_id}] Unreadable crawl result: {line}")
                continue
            logger.log(level, f"[{handle.job_id}] {line}")

    def request_stop(self, handle: ProcessHandle) -> None:
        if handle.process.returncode is not None:
            return
        logger.info(f"Sending SIGTERM to crawler of job {handle.job_id} (pid {handle.pid})")
        try:
            handle.process.terminate()
        except ProcessLookupError:
            pass  # Exited between the check and the signal

    async def wait(self, handle: ProcessHandle) -> CrawlOutcome:
        return_code = await handle.process.wait()
        if handle.pumps:
            await asyncio.gather(*handle.pumps, return_exceptions=True)

        if return_code != 0:
            return CrawlOutcome.failure(f"Crawl process exited with code {return_code}")

        summary = handle.result or {}
        return CrawlOutcome.ok(CrawlResult(
            pages_visited=summary.get("pages_visited", 0),
            report_location=summary.get("report_location", str(handle.report_path)),
            pages_failed=summary.get("pages_failed", 0),
        ))


class InProcessCrawlRunner(CrawlRunner):
    """Run every crawl as an asyncio task in this process."""

    def __init__(self, crawl_fn: Callable[[CrawlParams], Awaitable[CrawlResult]]):
        """
        Args:
            crawl_fn: Coroutine function performing one crawl
        """
        self.crawl_fn = crawl_fn

    async def start(self, job: Job) -> asyncio.Task:
        logger.info(f"Starting in-process crawl for job {job.job_id}: {job.params.url}")
        return asyncio.create_task(self.crawl_fn(job.params), name=f"crawl-{job.job_id}")

    def request_stop(self, handle: asyncio.Task) -> None:
        handle.cancel()

    async def wait(self, handle: asyncio.Task) -> CrawlOutcome:
        try:
            result = await handle
        except asyncio.CancelledError:
            # Only swallow the cancellation of the crawl itself, not our own
            current = asyncio.current_task()
            if handle.cancelled() and (current is None or current.cancelling() == 0):
                return CrawlOutcome.failure("Crawl cancelled")
            raise
        except Exception as e:
            logger.error(f"Crawl task {handle.get_name()} failed: {e}")
            return CrawlOutcome.failure(str(e) or type(e).__name__)
        return CrawlOutcome.ok(result)
