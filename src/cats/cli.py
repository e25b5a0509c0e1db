"""Command-line interface for CATS."""

import argparse
import asyncio
import dataclasses
import functools
import json
import signal
import sys
from pathlib import Path
from typing import List, Optional

from cats.browser_config import BrowserPoolConfig
from cats.config import CrawlerConfig, SchedulerConfig, settings
from cats.constants import (
    DEFAULT_CRAWLER_CONCURRENCY,
    DEFAULT_MAX_DEPTH,
    SUPPORTED_WCAG_LEVELS,
    SUPPORTED_WCAG_VERSIONS,
)
from cats.crawler import CrawlAbortedError, run_crawl
from cats.database import get_job_store
from cats.infrastructure import BrowserPool, PolitenessGate
from cats.logging_config import get_logger, setup_logging
from cats.models import CrawlParams
from cats.scheduler import InProcessCrawlRunner, JobScheduler, SubprocessCrawlRunner
from cats.scheduler.runners import RESULT_MARKER
from cats.wcag import parse_custom_tags

logger = get_logger(__name__)

# Exit status of a crawl stopped by SIGTERM (128 + signal number)
EXIT_TERMINATED = 128 + signal.SIGTERM


def _crawl_params(args, url: str) -> CrawlParams:
    return CrawlParams(
        url=url,
        max_depth=args.depth,
        max_pages=args.max_pages,
        concurrency=args.concurrency,
        wcag_version=args.wcag_version,
        wcag_level=args.wcag_level,
        custom_tags=parse_custom_tags(args.custom_tags) or None,
        use_sitemap=not args.no_sitemap,
    )


def _crawler_config(args) -> CrawlerConfig:
    config = CrawlerConfig.from_env()
    if getattr(args, "delay", None) is not None:
        config.per_domain_delay = args.delay
    return config


async def _run_single_crawl(params: CrawlParams, config: CrawlerConfig, output: Optional[str]):
    """Run one crawl, turning SIGTERM into a cancellation so the pool shuts down cleanly."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    try:
        loop.add_signal_handler(signal.SIGTERM, task.cancel)
    except (NotImplementedError, RuntimeError):
        pass  # No signal handlers on this platform
    try:
        return await run_crawl(
            params,
            config=config,
            output_path=Path(output) if output else None,
        )
    finally:
        try:
            loop.remove_signal_handler(signal.SIGTERM)
        except (NotImplementedError, RuntimeError):
            pass


def crawl_command(args) -> int:
    """Crawl one site in this process and print its result marker."""
    params = _crawl_params(args, args.seed)
    config = _crawler_config(args)

    try:
        result = asyncio.run(_run_single_crawl(params, config, args.output))
    except asyncio.CancelledError:
        logger.warning("Crawl stopped by signal")
        return EXIT_TERMINATED
    except CrawlAbortedError as e:
        logger.error(f"Crawl aborted: {e}")
        return 1
    except Exception as e:
        logger.error(f"Crawl failed: {e}", exc_info=True)
        return 1

    summary = {
        "pages_visited": result.pages_visited,
        "pages_failed": result.pages_failed,
        "report_location": result.report_location,
    }
    print(f"{RESULT_MARKER}{json.dumps(summary)}", flush=True)
    return 0


async def _run_jobs(args) -> List[dict]:
    """Submit every URL to a scheduler and wait until all jobs finished."""
    scheduler_config = SchedulerConfig.from_env()
    if args.max_concurrent_jobs is not None:
        scheduler_config = dataclasses.replace(
            scheduler_config, max_concurrent_jobs=args.max_concurrent_jobs
        )

    crawler_config = _crawler_config(args)
    job_store = get_job_store("none" if args.no_persist else None)

    pool: Optional[BrowserPool] = None
    if args.in_process:
        pool = BrowserPool(BrowserPoolConfig.from_env())
        gate = PolitenessGate(min_delay=crawler_config.per_domain_delay)
        runner = InProcessCrawlRunner(
            functools.partial(run_crawl, config=crawler_config, pool=pool, gate=gate)
        )
    else:
        runner = SubprocessCrawlRunner(
            reports_dir=crawler_config.reports_dir,
            per_domain_delay=args.delay,
            log_level=args.log_level,
        )

    scheduler = JobScheduler(runner, job_store=job_store, config=scheduler_config)
    await scheduler.start()
    try:
        job_ids = []
        for url in args.urls:
            submitted = scheduler.submit(_crawl_params(args, url), owner_id=args.owner)
            job_ids.append(submitted.job_id)
        await scheduler.wait_idle()
        return [scheduler.get_job(job_id).to_dict() for job_id in job_ids]
    finally:
        await scheduler.stop()
        if pool is not None:
            await pool.shutdown()
        job_store.close()


def run_command(args) -> int:
    """Schedule crawls of several sites and print a JSON summary."""
    try:
        jobs = asyncio.run(_run_jobs(args))
    except ValueError as e:
        logger.error(f"Invalid scheduler settings: {e}")
        return 2
    print(json.dumps({"jobs": jobs}, indent=2))
    return 0 if all(job["status"] == "completed" for job in jobs) else 1


def jobs_command(args) -> int:
    """List persisted jobs and their statistics."""
    store = get_job_store(args.backend)
    try:
        output = {
            "stats": store.get_stats(owner_id=args.owner),
            "jobs": store.list_jobs(owner_id=args.owner, limit=args.limit),
        }
    finally:
        store.close()
    print(json.dumps(output, indent=2, default=str))
    return 0


def _job_defaults() -> dict:
    """Per-job defaults taken from the CATS_* environment."""
    crawler_config = CrawlerConfig.from_env()
    try:
        concurrency = SchedulerConfig.from_env().default_crawler_concurrency
    except ValueError:
        # Invalid scheduler limits are reported by `run` itself
        concurrency = DEFAULT_CRAWLER_CONCURRENCY
    return {
        "max_pages": crawler_config.max_pages,
        "concurrency": concurrency,
        "wcag_version": crawler_config.wcag_version,
        "wcag_level": crawler_config.wcag_level,
    }


def _add_crawl_options(parser: argparse.ArgumentParser, defaults: dict) -> None:
    parser.add_argument(
        "--depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help=f"Maximum link depth in discovery mode (default: {DEFAULT_MAX_DEPTH})",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=defaults["max_pages"],
        help=f"Maximum pages to audit, 0 for unlimited (default: {defaults['max_pages']})",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=defaults["concurrency"],
        help=f"Pages audited in parallel per crawl (default: {defaults['concurrency']})",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Minimum seconds between requests to the same host",
    )
    parser.add_argument(
        "--wcag-version",
        choices=SUPPORTED_WCAG_VERSIONS,
        default=defaults["wcag_version"],
        help=f"WCAG version (default: {defaults['wcag_version']})",
    )
    parser.add_argument(
        "--wcag-level",
        choices=SUPPORTED_WCAG_LEVELS,
        default=defaults["wcag_level"],
        help=f"WCAG conformance level (default: {defaults['wcag_level']})",
    )
    parser.add_argument(
        "--custom-tags",
        help="Comma-separated axe tags, overrides the WCAG options",
    )
    parser.add_argument(
        "--no-sitemap",
        action="store_true",
        help="Skip sitemap discovery and use only link crawling",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cats",
        description="CATS - Crawl websites and audit every page for WCAG accessibility issues",
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL.upper() if settings.LOG_LEVEL else "INFO",
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to file in addition to console",
    )
    parser.add_argument(
        "--suppressed-log-file",
        help="Also write errors swallowed during cleanup to this file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    job_defaults = _job_defaults()

    crawl_parser = subparsers.add_parser("crawl", help="Crawl and audit one site.")
    crawl_parser.add_argument("--seed", required=True, help="URL to start crawling from")
    crawl_parser.add_argument("--output", "-o", help="JSON report path")
    _add_crawl_options(crawl_parser, job_defaults)
    crawl_parser.set_defaults(func=crawl_command)

    run_parser = subparsers.add_parser(
        "run", help="Crawl several sites through the job scheduler."
    )
    run_parser.add_argument("urls", nargs="+", help="Sites to crawl (one job each)")
    run_parser.add_argument(
        "--max-concurrent-jobs",
        type=int,
        default=None,
        help="Jobs running at the same time (default: CATS_MAX_CONCURRENT_JOBS or 3)",
    )
    run_parser.add_argument(
        "--in-process",
        action="store_true",
        help="Run crawls as tasks sharing one browser pool instead of child processes",
    )
    run_parser.add_argument("--owner", help="Owner recorded on every job")
    run_parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Do not record jobs in the job store",
    )
    _add_crawl_options(run_parser, job_defaults)
    run_parser.set_defaults(func=run_command)

    jobs_parser = subparsers.add_parser("jobs", help="List recorded jobs.")
    jobs_parser.add_argument("--owner", help="Only jobs of this owner")
    jobs_parser.add_argument("--limit", type=int, default=20, help="Maximum jobs listed (default: 20)")
    jobs_parser.add_argument(
        "--backend",
        choices=["local", "none"],
        default=None,
        help="Job store backend (default: CATS_DB_BACKEND or local)",
    )
    jobs_parser.set_defaults(func=jobs_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging based on flags
    setup_logging(
        level=args.log_level,
        log_file=getattr(args, "log_file", None),
        suppressed_level=settings.SUPPRESSED_LOG_LEVEL,
        suppressed_log_file=getattr(args, "suppressed_log_file", None),
    )

    if hasattr(args, "func"):
        return args.func(args)
    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
