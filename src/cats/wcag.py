"""WCAG ruleset selection for axe-core audits."""

import logging
from typing import Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

# Tags added per WCAG version; later versions include the earlier ones
VERSION_PREFIXES = {
    "2.0": ("wcag2",),
    "2.1": ("wcag2", "wcag21"),
    "2.2": ("wcag2", "wcag21", "wcag22"),
}

# Levels are cumulative: AA includes A, AAA includes AA and A
LEVEL_SUFFIXES = {
    "A": ("a",),
    "AA": ("a", "aa"),
    "AAA": ("a", "aa", "aaa"),
}

FALLBACK_TAGS = ["wcag2a", "wcag2aa"]


def parse_custom_tags(custom_tags: Union[str, Iterable[str], None]) -> List[str]:
    """Split a comma separated tag list, dropping blanks."""
    if not custom_tags:
        return []
    if isinstance(custom_tags, str):
        custom_tags = custom_tags.split(",")
    return [tag.strip() for tag in custom_tags if tag and tag.strip()]


def build_axe_tags(
    wcag_version: str,
    wcag_level: str,
    custom_tags: Union[str, Iterable[str], None] = None,
) -> List[str]:
    """
    Build the axe-core tag list for a WCAG version and conformance level.

    Args:
        wcag_version: "2.0", "2.1" or "2.2" (a "wcag" prefix is tolerated)
        wcag_level: "A", "AA" or "AAA"
        custom_tags: Explicit tags overriding the version/level selection

    Returns:
        Tags passed to axe.run as runOnly values
    """
    tags = parse_custom_tags(custom_tags)
    if tags:
        logger.info(f"Using custom tags: {', '.join(tags)}")
        return tags

    version = wcag_version[4:] if wcag_version.startswith("wcag") else wcag_version
    prefixes = VERSION_PREFIXES.get(version)
    suffixes = LEVEL_SUFFIXES.get(wcag_level.upper())
    if prefixes is None or suffixes is None:
        logger.warning(
            f"Unknown WCAG version/level: {wcag_version} {wcag_level}, defaulting to 2.0 AA"
        )
        return list(FALLBACK_TAGS)

    # Grouped by level first: wcag2a, wcag21a, wcag2aa, wcag21aa, ...
    tags = [f"{prefix}{suffix}" for suffix in suffixes for prefix in prefixes]
    logger.info(f"Testing WCAG {version} Level {wcag_level.upper()}: {', '.join(tags)}")
    return tags
