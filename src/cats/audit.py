"""axe-core accessibility audits of Playwright pages."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from cats.constants import DEFAULT_AXE_SCRIPT_URL

logger = logging.getLogger(__name__)

AXE_RUN_SCRIPT = """
async (options) => {
    return await window.axe.run(document, options);
}
"""


class AuditError(Exception):
    """Raised when axe-core cannot be loaded into or run on a page."""


class AxeAuditEngine:
    """
    Run axe-core against a loaded page.

    The axe script is injected from a local file when one is configured
    (read once and cached), otherwise from a URL.
    """

    def __init__(
        self,
        tags: List[str],
        script_path: Optional[str] = None,
        script_url: str = DEFAULT_AXE_SCRIPT_URL,
    ):
        """
        Args:
            tags: axe tags to run (see cats.wcag.build_axe_tags)
            script_path: Local axe.min.js path
            script_url: Fallback URL of axe.min.js
        """
        self.tags = list(tags)
        self.script_path = script_path
        self.script_url = script_url
        self._script_source: Optional[str] = None

    @property
    def run_options(self) -> Dict[str, Any]:
        return {"runOnly": {"type": "tag", "values": self.tags}}

    def _load_script_source(self) -> Optional[str]:
        if self.script_path is None:
            return None
        if self._script_source is None:
            path = Path(self.script_path)
            try:
                self._script_source = path.read_text(encoding="utf-8")
            except OSError as e:
                raise AuditError(f"Cannot read axe script {path}: {e}") from e
        return self._script_source

    async def inject(self, page: Any) -> None:
        """Load axe-core into the page unless it is already present."""
        if await page.evaluate("() => typeof window.axe !== 'undefined'"):
            return

        source = self._load_script_source()
        try:
            if source is not None:
                await page.add_script_tag(content=source)
            else:
                await page.add_script_tag(url=self.script_url)
        except Exception as e:
            raise AuditError(f"Failed to inject axe-core: {e}") from e

    async def audit(self, page: Any) -> Dict[str, Any]:
        """
        Audit the page currently loaded in a Playwright page.

        Returns:
            Page result: url, title and the raw axe results
            (violations, passes, incomplete, inapplicable, ...)
        """
        await self.inject(page)
        title = await page.title()
        results = await page.evaluate(AXE_RUN_SCRIPT, self.run_options)

        violations = results.get("violations", [])
        logger.debug(f"{len(violations)} violations on {page.url}")

        return {
            "pageUrl": page.url,
            "pageTitle": title or "",
            **results,
        }
