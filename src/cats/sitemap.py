"""Sitemap discovery for seeding a crawl."""

import logging
import re
from typing import List, Optional, Tuple
from urllib.parse import urlparse
from xml.etree import ElementTree as ET

import httpx

from cats.constants import (
    DEFAULT_SITEMAP_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    MAX_SITEMAP_INDEX_DEPTH,
    SITEMAP_CANDIDATE_PATHS,
)
from cats.utils import is_http_url, is_same_host, normalize_url

logger = logging.getLogger(__name__)


def _local_name(tag: str) -> str:
    """Tag name without its XML namespace."""
    return tag.split("}")[-1] if "}" in tag else tag


def parse_sitemap_content(content: str) -> Tuple[str, List[str]]:
    """
    Parse sitemap XML.

    Args:
        content: XML text of a urlset or a sitemap index

    Returns:
        (kind, locations) where kind is "urlset", "sitemapindex" or "unknown".
        For an index the locations are child sitemap URLs.
    """
    content = re.sub(r"<!DOCTYPE[^>]*>", "", content).strip()
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        logger.error(f"Failed to parse sitemap XML: {e}")
        return "unknown", []

    kind = _local_name(root.tag)
    if kind == "urlset":
        entry_tag = "url"
    elif kind == "sitemapindex":
        entry_tag = "sitemap"
    else:
        logger.warning(f"Unknown sitemap root element: {kind}")
        return "unknown", []

    locations = []
    for entry in root:
        if _local_name(entry.tag) != entry_tag:
            continue
        for child in entry:
            if _local_name(child.tag) == "loc" and child.text and child.text.strip():
                locations.append(child.text.strip())
                break
    return kind, locations


class SitemapDiscovery:
    """
    Find the pages of a site through its sitemap.

    Supports:
    - The usual sitemap locations (/sitemap.xml, /sitemap_index.xml, /sitemaps.xml)
    - Sitemap index files, followed up to a bounded depth
    - Same-host filtering and URL normalisation
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_SITEMAP_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        max_index_depth: int = MAX_SITEMAP_INDEX_DEPTH,
    ):
        """
        Args:
            client: Shared httpx client (one is created per discover() call otherwise)
            timeout: Request timeout in seconds
            user_agent: User-Agent header for sitemap requests
            max_index_depth: How many levels of nested sitemap indexes to follow
        """
        self._client = client
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_index_depth = max_index_depth

    @staticmethod
    def candidate_urls(seed_url: str) -> List[str]:
        parsed = urlparse(seed_url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        return [f"{origin}{path}" for path in SITEMAP_CANDIDATE_PATHS]

    async def discover(self, seed_url: str, max_urls: Optional[int] = None) -> List[str]:
        """
        Return the pages listed by the first sitemap that yields any.

        Args:
            seed_url: Crawl seed; only URLs on its host are kept
            max_urls: Stop collecting after this many URLs (None for all)

        Returns:
            Normalised page URLs in sitemap order, empty if no sitemap was found
        """
        if self._client is not None:
            return await self._discover(self._client, seed_url, max_urls)

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={
                "User-Agent": self.user_agent,
                "Accept": "application/xml, text/xml, */*",
            },
        ) as client:
            return await self._discover(client, seed_url, max_urls)

    async def _discover(
        self,
        client: httpx.AsyncClient,
        seed_url: str,
        max_urls: Optional[int],
    ) -> List[str]:
        for sitemap_url in self.candidate_urls(seed_url):
            logger.info(f"Trying to load sitemap: {sitemap_url}")
            found: List[str] = []
            await self._collect(client, sitemap_url, seed_url, found, max_urls, depth=0)
            if found:
                logger.info(f"Found sitemap with {len(found)} URLs")
                return found

        logger.info("No sitemap found, falling back to discovery crawling")
        return []

    async def _collect(
        self,
        client: httpx.AsyncClient,
        sitemap_url: str,
        seed_url: str,
        found: List[str],
        max_urls: Optional[int],
        depth: int,
    ) -> None:
        """Fetch one sitemap and append its same-host URLs to found."""
        if depth > self.max_index_depth:
            logger.warning(f"Sitemap index nesting too deep, skipping {sitemap_url}")
            return
        if max_urls and len(found) >= max_urls:
            return

        content = await self._fetch(client, sitemap_url)
        if content is None:
            return

        kind, locations = parse_sitemap_content(content)
        if kind == "sitemapindex":
            for child_url in locations:
                logger.debug(f"Found child sitemap: {child_url}")
                await self._collect(client, child_url, seed_url, found, max_urls, depth + 1)
            return

        for location in locations:
            if not is_http_url(location) or not is_same_host(location, seed_url):
                continue
            url = normalize_url(location)
            if url in found:
                continue
            found.append(url)
            if max_urls and len(found) >= max_urls:
                logger.info(f"Reached max URLs limit ({max_urls})")
                return

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"Failed to fetch sitemap {url}: {e}")
            return None
        if response.status_code != 200:
            logger.debug(f"No sitemap at {url} (status: {response.status_code})")
            return None
        return response.text
