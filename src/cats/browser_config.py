"""
Browser configuration for the pooled Playwright browsers.

This module provides a validated Pydantic configuration model for every
browser-pool setting: retention limits, launch arguments tuned for low
resource usage, and the options applied to each isolated audit context.
"""
import os
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from cats.config import settings
from cats.constants import (
    ALWAYS_BLOCKED_RESOURCE_TYPES,
    CONTEXTS_PER_BROWSER,
    DEFAULT_BROWSER_LAUNCH_TIMEOUT_MS,
    DEFAULT_BROWSER_MAX_LIFETIME_SECONDS,
    DEFAULT_BROWSER_MAX_PAGES,
    DEFAULT_BROWSER_MEMORY_LIMIT_MB,
    DEFAULT_BROWSER_POOL_SIZE,
    DEFAULT_USER_AGENT,
    DESKTOP_VIEWPORT_HEIGHT,
    DESKTOP_VIEWPORT_WIDTH,
)


# Baseline flags for headless Chromium in containers
BASE_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-plugins",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]


class BrowserPoolConfig(BaseModel):
    """
    Configuration for the BrowserPool.

    All fields are validated by Pydantic to ensure type safety and valid values.
    """

    max_pool_size: int = Field(
        default=DEFAULT_BROWSER_POOL_SIZE,
        description="Idle browsers retained for reuse (retention target, not an admission cap)",
        ge=1,
        le=64,
    )

    max_lifetime_seconds: float = Field(
        default=DEFAULT_BROWSER_MAX_LIFETIME_SECONDS,
        description="Browsers older than this are retired on release",
        gt=0,
    )

    max_pages_per_browser: int = Field(
        default=DEFAULT_BROWSER_MAX_PAGES,
        description="Browsers that served more pages than this are retired on release",
        ge=1,
    )

    memory_limit_mb: int = Field(
        default=DEFAULT_BROWSER_MEMORY_LIMIT_MB,
        description="V8 heap limit passed to the browser in cloud mode",
        ge=128,
    )

    headless: bool = Field(
        default=True,
        description="Run browsers in headless mode"
    )

    launch_timeout_ms: int = Field(
        default=DEFAULT_BROWSER_LAUNCH_TIMEOUT_MS,
        description="Browser launch timeout in milliseconds",
        ge=1000,
        le=300000,
    )

    disable_images: bool = Field(
        default=True,
        description="Block image loading (faster audits)"
    )

    disable_css: bool = Field(
        default=False,
        description="Block stylesheets (breaks layout-dependent rules such as color contrast)"
    )

    cloud_mode: bool = Field(
        default=False,
        description="Add memory-pressure flags for constrained cloud containers"
    )

    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User agent for every audit context"
    )

    viewport_width: int = Field(default=DESKTOP_VIEWPORT_WIDTH, ge=320)
    viewport_height: int = Field(default=DESKTOP_VIEWPORT_HEIGHT, ge=240)

    extra_launch_args: List[str] = Field(
        default_factory=list,
        description="Additional browser launch arguments (e.g., '--disable-http2')"
    )

    @property
    def max_connections(self) -> int:
        """Contexts the pool is sized for across all browsers."""
        return self.max_pool_size * CONTEXTS_PER_BROWSER

    @property
    def blocks_resources(self) -> bool:
        """Whether contexts get a resource routing filter."""
        return self.disable_images or self.disable_css

    def blocked_resource_types(self) -> set:
        """Resource types aborted by the routing filter."""
        if not self.blocks_resources:
            return set()
        blocked = set(ALWAYS_BLOCKED_RESOURCE_TYPES)
        if self.disable_images:
            blocked.add("image")
        if self.disable_css:
            blocked.add("stylesheet")
        return blocked

    def launch_args(self) -> List[str]:
        """Build the Chromium launch arguments."""
        args = list(BASE_LAUNCH_ARGS)

        if self.cloud_mode:
            args.extend([
                "--memory-pressure-off",
                f"--js-flags=--max-old-space-size={self.memory_limit_mb}",
                "--disable-features=TranslateUI",
                "--disable-ipc-flooding-protection",
            ])

        if self.disable_images:
            args.append("--blink-settings=imagesEnabled=false")

        args.extend(self.extra_launch_args)
        return args

    def context_options(self) -> Dict[str, Any]:
        """Options passed to browser.new_context() for each isolated context."""
        return {
            "viewport": {"width": self.viewport_width, "height": self.viewport_height},
            "user_agent": self.user_agent,
            "ignore_https_errors": True,
            "reduced_motion": "reduce",
        }

    @classmethod
    def from_env(cls) -> "BrowserPoolConfig":
        """Load pool configuration from CATS_* environment variables.

        Unset or malformed values keep their defaults.
        """
        values: Dict[str, Any] = {"cloud_mode": settings.IS_CLOUD_RUN}
        env_map = {
            "CATS_BROWSER_POOL_SIZE": ("max_pool_size", int),
            "CATS_BROWSER_MAX_LIFETIME_SECONDS": ("max_lifetime_seconds", float),
            "CATS_BROWSER_MAX_PAGES": ("max_pages_per_browser", int),
            "CATS_BROWSER_MEMORY_LIMIT_MB": ("memory_limit_mb", int),
            "CATS_BROWSER_LAUNCH_TIMEOUT_MS": ("launch_timeout_ms", int),
        }
        for env_key, (field_name, caster) in env_map.items():
            raw = os.getenv(env_key)
            if raw is None:
                continue
            try:
                values[field_name] = caster(raw)
            except ValueError:
                pass  # Keep default if conversion fails

        # Images are blocked unless explicitly re-enabled; CSS only when asked
        values["disable_images"] = os.getenv("CATS_DISABLE_IMAGES", "true").lower() != "false"
        values["disable_css"] = os.getenv("CATS_DISABLE_CSS", "false").lower() == "true"

        user_agent = os.getenv("CATS_USER_AGENT")
        if user_agent:
            values["user_agent"] = user_agent

        return cls(**values)


# Pre-configured instance with defaults
DEFAULT_POOL_CONFIG = BrowserPoolConfig()
