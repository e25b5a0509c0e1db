"""Tests for crawl runners."""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

import pytest

from cats.models import CrawlParams, CrawlResult, Job
from cats.scheduler.runners import (
    RESULT_MARKER,
    InProcessCrawlRunner,
    SubprocessCrawlRunner,
)


def running_job(url: str = "https://www.example.com/start", **kwargs) -> Job:
    job = Job(params=CrawlParams(url=url, **kwargs), created_at=datetime(2025, 1, 31, 9, 0, 0))
    job.mark_running(datetime(2025, 1, 31, 10, 0, 0))
    return job


class ScriptRunner(SubprocessCrawlRunner):
    """Runs an inline Python script instead of `cats crawl`."""

    def __init__(self, script: str, **kwargs):
        super().__init__(**kwargs)
        self.script = script

    def build_command(self, params, report_path):
        return [self.python_executable, "-c", self.script]


# =============================================================================
# SubprocessCrawlRunner
# =============================================================================

class TestSubprocessCommand:
    """Command line of the child crawl process."""

    def test_command_carries_crawl_parameters(self, tmp_path):
        runner = SubprocessCrawlRunner(python_executable="python3", reports_dir=tmp_path)
        job = running_job(max_depth=3, max_pages=0, concurrency=2, wcag_version="2.2", wcag_level="AAA")
        report = runner.report_path_for(job)

        command = runner.build_command(job.params, report)

        assert command[:3] == ["python3", "-m", "cats"]
        assert command.index("crawl") > command.index("--log-level")
        assert command[command.index("--seed") + 1] == "https://www.example.com/start"
        assert command[command.index("--depth") + 1] == "3"
        assert command[command.index("--max-pages") + 1] == "0"
        assert command[command.index("--concurrency") + 1] == "2"
        assert command[command.index("--wcag-version") + 1] == "2.2"
        assert command[command.index("--wcag-level") + 1] == "AAA"
        assert command[command.index("--output") + 1] == str(report)
        assert "--no-sitemap" not in command
        assert "--custom-tags" not in command

    def test_optional_flags(self, tmp_path):
        runner = SubprocessCrawlRunner(reports_dir=tmp_path, per_domain_delay=2.5)
        job = running_job(custom_tags=["wcag2a", "best-practice"], use_sitemap=False)

        command = runner.build_command(job.params, runner.report_path_for(job))

        assert command[command.index("--custom-tags") + 1] == "wcag2a,best-practice"
        assert "--no-sitemap" in command
        assert command[command.index("--delay") + 1] == "2.5"

    def test_report_path_is_per_domain_and_per_job(self, tmp_path):
        runner = SubprocessCrawlRunner(reports_dir=tmp_path)
        job = running_job()

        path = runner.report_path_for(job)

        assert path.parent == tmp_path / "www.example.com"
        assert path.name == f"www.example.com_wcag2.1_AA_2025-01-31T10-00-00_{job.job_id[:8]}.json"


class TestSubprocessLifecycle:
    """Real child processes running small inline scripts."""

    @pytest.mark.asyncio
    async def test_zero_exit_is_success_with_reported_summary(self, tmp_path):
        script = (
            "import json\n"
            "print('crawling...')\n"
            f"print({RESULT_MARKER!r} + json.dumps({{'pages_visited': 4, 'pages_failed': 1, "
            "'report_location': 'report.json'}))\n"
        )
        runner = ScriptRunner(script, reports_dir=tmp_path)

        handle = await runner.start(running_job())
        outcome = await runner.wait(handle)

        assert outcome.success is True
        assert outcome.result.pages_visited == 4
        assert outcome.result.pages_failed == 1
        assert outcome.result.report_location == "report.json"

    @pytest.mark.asyncio
    async def test_missing_summary_falls_back_to_report_path(self, tmp_path):
        runner = ScriptRunner("print('done')", reports_dir=tmp_path)
        job = running_job()

        handle = await runner.start(job)
        outcome = await runner.wait(handle)

        assert outcome.success is True
        assert outcome.result.pages_visited == 0
        assert outcome.result.report_location == str(runner.report_path_for(job))

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failure(self, tmp_path):
        runner = ScriptRunner("import sys; sys.exit(3)", reports_dir=tmp_path)

        handle = await runner.start(running_job())
        outcome = await runner.wait(handle)

        assert outcome.success is False
        assert outcome.error == "Crawl process exited with code 3"

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="SIGTERM semantics")
    async def test_request_stop_terminates_process(self, tmp_path):
        runner = ScriptRunner("import time; time.sleep(30)", reports_dir=tmp_path)

        handle = await runner.start(running_job())
        runner.request_stop(handle)
        outcome = await asyncio.wait_for(runner.wait(handle), timeout=10)

        assert outcome.success is False
        assert outcome.error == "Crawl process exited with code -15"

    @pytest.mark.asyncio
    async def test_request_stop_after_exit_is_harmless(self, tmp_path):
        runner = ScriptRunner("pass", reports_dir=tmp_path)

        handle = await runner.start(running_job())
        await runner.wait(handle)
        runner.request_stop(handle)

    @pytest.mark.asyncio
    async def test_over_long_output_line_does_not_stall_the_pipe(self, tmp_path, caplog):
        script = (
            "import json, sys\n"
            "print('x' * 100000)\n"
            "for i in range(5000):\n"
            "    print(f'visited page {i}')\n"
            f"print({RESULT_MARKER!r} + json.dumps({{'pages_visited': 5000}}))\n"
            "sys.stderr.write('e' * 100000 + '\\n')\n"
        )
        runner = ScriptRunner(script, reports_dir=tmp_path, output_limit=1024)
        job = running_job()

        with caplog.at_level("INFO", logger="cats.scheduler.runners"):
            handle = await runner.start(job)
            outcome = await asyncio.wait_for(runner.wait(handle), timeout=15)

        assert outcome.success is True
        assert outcome.result.pages_visited == 5000
        assert f"[{job.job_id}] visited page 4999" in caplog.text
        assert "Dropped output line longer than 1024 bytes" in caplog.text

    @pytest.mark.asyncio
    async def test_long_lines_within_default_limit_are_forwarded(self, tmp_path, caplog):
        runner = ScriptRunner("print('y' * 100000)", reports_dir=tmp_path)

        with caplog.at_level("INFO", logger="cats.scheduler.runners"):
            handle = await runner.start(running_job())
            outcome = await asyncio.wait_for(runner.wait(handle), timeout=15)

        assert outcome.success is True
        assert "y" * 100000 in caplog.text

    @pytest.mark.asyncio
    async def test_child_output_is_logged_with_job_id(self, tmp_path, caplog):
        runner = ScriptRunner("print('hello from child')", reports_dir=tmp_path)
        job = running_job()

        with caplog.at_level("INFO", logger="cats.scheduler.runners"):
            handle = await runner.start(job)
            await runner.wait(handle)

        assert f"[{job.job_id}] hello from child" in caplog.text


# =============================================================================
# InProcessCrawlRunner
# =============================================================================

class TestInProcessRunner:
    """Crawls running as asyncio tasks."""

    @pytest.mark.asyncio
    async def test_success(self):
        async def crawl(params):
            return CrawlResult(pages_visited=2, report_location="r.json")

        runner = InProcessCrawlRunner(crawl)
        handle = await runner.start(running_job())
        outcome = await runner.wait(handle)

        assert outcome.success is True
        assert outcome.result.pages_visited == 2

    @pytest.mark.asyncio
    async def test_exception_becomes_failure(self):
        async def crawl(params):
            raise ConnectionError("browser went away")

        runner = InProcessCrawlRunner(crawl)
        handle = await runner.start(running_job())
        outcome = await runner.wait(handle)

        assert outcome.success is False
        assert outcome.error == "browser went away"

    @pytest.mark.asyncio
    async def test_request_stop_cancels_the_crawl(self):
        started = asyncio.Event()

        async def crawl(params):
            started.set()
            await asyncio.sleep(60)

        runner = InProcessCrawlRunner(crawl)
        handle = await runner.start(running_job())
        await started.wait()

        runner.request_stop(handle)
        outcome = await asyncio.wait_for(runner.wait(handle), timeout=1)

        assert outcome.success is False
        assert outcome.error == "Crawl cancelled"

    @pytest.mark.asyncio
    async def test_crawl_receives_job_params(self):
        seen = []

        async def crawl(params):
            seen.append(params)
            return CrawlResult(pages_visited=0)

        runner = InProcessCrawlRunner(crawl)
        job = running_job("https://a11y.example.org")
        await runner.wait(await runner.start(job))

        assert seen == [job.params]
