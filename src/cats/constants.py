# src/cats/constants.py
"""Centralized constants for CATS.

This module contains magic numbers and default values that are used across
multiple modules. For environment-driven settings, see config.py and
browser_config.py.
"""

# =============================================================================
# Job Scheduler Constants
# =============================================================================

# Maximum number of crawl jobs running at the same time
DEFAULT_MAX_CONCURRENT_JOBS = 3

# Wall-clock limit for a single job before the sweep times it out (seconds)
DEFAULT_MAX_JOB_RUNTIME_SECONDS = 3600  # 1 hour

# How long terminal jobs stay in memory before eviction (seconds)
DEFAULT_JOB_CLEANUP_DELAY_SECONDS = 300  # 5 minutes

# Interval of the periodic maintenance sweep (seconds)
DEFAULT_SWEEP_INTERVAL_SECONDS = 30

# Longest output line read from a crawl child process (bytes)
DEFAULT_CHILD_OUTPUT_LIMIT_BYTES = 1024 * 1024

# Browser pages a single job may drive in parallel
DEFAULT_CRAWLER_CONCURRENCY = 4

# Error recorded on jobs that exceed their runtime
JOB_TIMEOUT_MESSAGE = "Job exceeded maximum runtime limit"


# =============================================================================
# Browser Pool Constants
# =============================================================================

# Idle browsers retained for reuse
DEFAULT_BROWSER_POOL_SIZE = 2

# Browsers older than this are closed instead of pooled (seconds)
DEFAULT_BROWSER_MAX_LIFETIME_SECONDS = 600  # 10 minutes

# Browsers that served more pages than this are closed instead of pooled
DEFAULT_BROWSER_MAX_PAGES = 50

# V8 heap limit passed to browsers in cloud mode (MB)
DEFAULT_BROWSER_MEMORY_LIMIT_MB = 1024

# Browser launch timeout (milliseconds)
DEFAULT_BROWSER_LAUNCH_TIMEOUT_MS = 30000

# Isolated contexts allowed per pooled browser (observability only)
CONTEXTS_PER_BROWSER = 5

# Viewport used for every audit context
DESKTOP_VIEWPORT_WIDTH = 1280
DESKTOP_VIEWPORT_HEIGHT = 720

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (compatible; CATS-Crawler/1.0; +https://github.com/iamjolly/crawl-and-test)"
)

# Resource types aborted whenever any resource filtering is active
ALWAYS_BLOCKED_RESOURCE_TYPES = ("font", "media", "websocket")


# =============================================================================
# Crawler Constants
# =============================================================================

# Default page cap for a crawl (0 means unlimited)
DEFAULT_MAX_PAGES_TO_CRAWL = 25

# Default link depth for discovery crawling
DEFAULT_MAX_DEPTH = 2

# Minimum seconds between two requests to the same host
DEFAULT_PER_DOMAIN_DELAY_SECONDS = 1.0

# Page navigation timeout (milliseconds)
DEFAULT_PAGE_TIMEOUT_MS = 90000

# robots.txt and sitemap fetch timeouts (seconds)
DEFAULT_ROBOTS_TIMEOUT_SECONDS = 10.0
DEFAULT_SITEMAP_TIMEOUT_SECONDS = 20.0

# Retries for a failed page visit
DEFAULT_MAX_RETRIES = 3

# Base retry delay (milliseconds), doubled on every attempt
DEFAULT_RETRY_DELAY_MS = 2000

# Cap for the exponential retry delay (seconds)
MAX_BACKOFF_DELAY_SECONDS = 30.0

# Navigation wait strategy
DEFAULT_WAIT_STRATEGY = "domcontentloaded"

# Sitemap locations tried before falling back to link discovery
SITEMAP_CANDIDATE_PATHS = ("/sitemap.xml", "/sitemap_index.xml", "/sitemaps.xml")

# Maximum nesting followed inside sitemap index files
MAX_SITEMAP_INDEX_DEPTH = 3

# Error substrings that will not resolve with a retry
NON_RETRYABLE_ERROR_PATTERNS = (
    "net::err_name_not_resolved",
    "net::err_connection_refused",
    "invalid url",
    "protocol error",
)


# =============================================================================
# WCAG / Audit Constants
# =============================================================================

DEFAULT_WCAG_VERSION = "2.1"
DEFAULT_WCAG_LEVEL = "AA"

SUPPORTED_WCAG_VERSIONS = ("2.0", "2.1", "2.2")
SUPPORTED_WCAG_LEVELS = ("A", "AA", "AAA")

# axe-core is injected from this URL unless a local script path is configured
DEFAULT_AXE_SCRIPT_URL = "https://cdnjs.cloudflare.com/ajax/libs/axe-core/4.10.2/axe.min.js"
