from dotenv import load_dotenv
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from pathlib import Path
import logging
import os

from cats.constants import (
    DEFAULT_AXE_SCRIPT_URL,
    DEFAULT_CRAWLER_CONCURRENCY,
    DEFAULT_JOB_CLEANUP_DELAY_SECONDS,
    DEFAULT_MAX_CONCURRENT_JOBS,
    DEFAULT_MAX_JOB_RUNTIME_SECONDS,
    DEFAULT_MAX_PAGES_TO_CRAWL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_TIMEOUT_MS,
    DEFAULT_PER_DOMAIN_DELAY_SECONDS,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_ROBOTS_TIMEOUT_SECONDS,
    DEFAULT_SITEMAP_TIMEOUT_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_USER_AGENT,
    DEFAULT_WAIT_STRATEGY,
    DEFAULT_WCAG_LEVEL,
    DEFAULT_WCAG_VERSION,
    SUPPORTED_WCAG_LEVELS,
    SUPPORTED_WCAG_VERSIONS,
)

load_dotenv()  # Loads variables from .env file

logger = logging.getLogger(__name__)

ENV_PREFIX = "CATS_"


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable, keeping the default if malformed."""
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring invalid integer for {ENV_PREFIX}{name}: {value!r}")
        return default


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable, keeping the default if malformed."""
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid number for {ENV_PREFIX}{name}: {value!r}")
        return default


def _env_choice(name: str, default: str, choices) -> str:
    """Read an environment variable restricted to a set of values."""
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None:
        return default
    if value not in choices:
        logger.warning(
            f"Ignoring {ENV_PREFIX}{name}={value!r}, expected one of: {', '.join(choices)}"
        )
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    ROOT_DIR = Path(os.getenv("CATS_ROOT_DIR", os.getcwd()))
    REPORTS_DIR = Path(os.getenv("CATS_REPORTS_DIR", str(ROOT_DIR / "public" / "reports")))

    DATABASE_URL = os.getenv("CATS_DATABASE_URL", "sqlite:///cats_jobs.db")  # Default to SQLite
    DB_BACKEND = os.getenv("CATS_DB_BACKEND", "local")  # 'local' or 'none'

    LOG_LEVEL = os.getenv("CATS_LOG_LEVEL", "INFO")
    # Level of errors swallowed during cleanup (see cats.utils.best_effort)
    SUPPRESSED_LOG_LEVEL = os.getenv("CATS_SUPPRESSED_LOG_LEVEL", "WARNING")

    # Cloud Run sets K_SERVICE; production deployments get the same treatment
    IS_CLOUD_RUN = bool(os.getenv("K_SERVICE")) or os.getenv("CATS_ENV") == "production"


settings = Settings()


@dataclass
class SchedulerConfig:
    """Limits that govern job admission and maintenance."""
    max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS
    max_job_runtime_seconds: float = DEFAULT_MAX_JOB_RUNTIME_SECONDS
    cleanup_delay_seconds: float = DEFAULT_JOB_CLEANUP_DELAY_SECONDS
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    default_crawler_concurrency: int = DEFAULT_CRAWLER_CONCURRENCY

    def __post_init__(self) -> None:
        if self.max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        """Load scheduler limits from CATS_* environment variables.

        Returns:
            SchedulerConfig with values from environment
        """
        return cls(
            max_concurrent_jobs=_env_int("MAX_CONCURRENT_JOBS", DEFAULT_MAX_CONCURRENT_JOBS),
            max_job_runtime_seconds=_env_int(
                "MAX_JOB_RUNTIME_MS", DEFAULT_MAX_JOB_RUNTIME_SECONDS * 1000
            ) / 1000,
            cleanup_delay_seconds=_env_int(
                "JOB_CLEANUP_DELAY_MS", DEFAULT_JOB_CLEANUP_DELAY_SECONDS * 1000
            ) / 1000,
            sweep_interval_seconds=_env_float("SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS),
            default_crawler_concurrency=_env_int(
                "DEFAULT_CRAWLER_CONCURRENCY", DEFAULT_CRAWLER_CONCURRENCY
            ),
        )


@dataclass
class CrawlerConfig:
    """Configuration for a single crawl worker."""
    max_pages: int = DEFAULT_MAX_PAGES_TO_CRAWL
    per_domain_delay: float = DEFAULT_PER_DOMAIN_DELAY_SECONDS
    page_timeout_ms: int = DEFAULT_PAGE_TIMEOUT_MS
    robots_timeout: float = DEFAULT_ROBOTS_TIMEOUT_SECONDS
    sitemap_timeout: float = DEFAULT_SITEMAP_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    wait_strategy: str = DEFAULT_WAIT_STRATEGY
    wcag_version: str = DEFAULT_WCAG_VERSION
    wcag_level: str = DEFAULT_WCAG_LEVEL
    reports_dir: Path = settings.REPORTS_DIR
    axe_script_path: Optional[str] = None
    axe_script_url: str = DEFAULT_AXE_SCRIPT_URL
    user_agent: str = DEFAULT_USER_AGENT
    respect_robots: bool = True

    @classmethod
    def from_env(cls) -> "CrawlerConfig":
        """Load crawler configuration from CATS_* environment variables.

        Returns:
            CrawlerConfig with values from environment
        """
        return cls(
            max_pages=_env_int("MAX_PAGES", DEFAULT_MAX_PAGES_TO_CRAWL),
            per_domain_delay=_env_int(
                "PER_DOMAIN_DELAY_MS", int(DEFAULT_PER_DOMAIN_DELAY_SECONDS * 1000)
            ) / 1000,
            page_timeout_ms=_env_int("PAGE_TIMEOUT", DEFAULT_PAGE_TIMEOUT_MS),
            robots_timeout=_env_int(
                "ROBOTS_TIMEOUT", int(DEFAULT_ROBOTS_TIMEOUT_SECONDS * 1000)
            ) / 1000,
            sitemap_timeout=_env_int(
                "SITEMAP_TIMEOUT", int(DEFAULT_SITEMAP_TIMEOUT_SECONDS * 1000)
            ) / 1000,
            max_retries=_env_int("MAX_RETRIES", DEFAULT_MAX_RETRIES),
            retry_delay_ms=_env_int("RETRY_DELAY_MS", DEFAULT_RETRY_DELAY_MS),
            wait_strategy=os.getenv("CATS_WAIT_STRATEGY", DEFAULT_WAIT_STRATEGY),
            wcag_version=_env_choice("WCAG_VERSION", DEFAULT_WCAG_VERSION, SUPPORTED_WCAG_VERSIONS),
            wcag_level=_env_choice("WCAG_LEVEL", DEFAULT_WCAG_LEVEL, SUPPORTED_WCAG_LEVELS),
            reports_dir=Path(os.getenv("CATS_REPORTS_DIR", str(settings.REPORTS_DIR))),
            axe_script_path=os.getenv("CATS_AXE_SCRIPT_PATH"),
            axe_script_url=os.getenv("CATS_AXE_SCRIPT_URL", DEFAULT_AXE_SCRIPT_URL),
            user_agent=os.getenv("CATS_USER_AGENT", DEFAULT_USER_AGENT),
            respect_robots=_env_bool("RESPECT_ROBOTS", True),
        )


def sanitize_domain_name(domain: str) -> str:
    """Make a hostname safe for use as a directory name."""
    return "".join(c if c.isalnum() or c in ".-" else "_" for c in domain)


def generate_report_filename(
    domain: str,
    wcag_version: str,
    wcag_level: str,
    extension: str = "json",
    now: Optional[datetime] = None,
    suffix: Optional[str] = None,
) -> str:
    """Build a report file name such as example.com_wcag2.1_AA_2025-01-31T10-00-00.json.

    A suffix (e.g. a short job ID) keeps names unique when two crawls of the
    same domain finish within the same second.
    """
    timestamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    version = wcag_version[4:] if wcag_version.startswith("wcag") else wcag_version
    stem = f"{sanitize_domain_name(domain)}_wcag{version}_{wcag_level}_{timestamp}"
    if suffix:
        stem = f"{stem}_{suffix}"
    return f"{stem}.{extension}"


def get_domain_reports_dir(domain: str, reports_dir: Optional[Path] = None) -> Path:
    """Get the reports directory for a specific domain.

    Args:
        domain: The domain name
        reports_dir: Base reports directory. Defaults to settings.REPORTS_DIR.

    Returns:
        Path of the domain's reports directory (not created)
    """
    base = Path(reports_dir) if reports_dir is not None else settings.REPORTS_DIR
    return base / sanitize_domain_name(domain)
