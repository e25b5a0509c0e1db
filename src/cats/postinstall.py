"""
Post-install setup for CATS.

Downloads the Chromium build Playwright audits pages with and, optionally,
a local copy of axe-core so audits do not fetch it from the CDN for every
page. Run once after installation with `cats-postinstall`.
"""
import argparse
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

import httpx

from cats.config import settings
from cats.constants import DEFAULT_AXE_SCRIPT_URL


def install_chromium(with_deps: bool) -> int:
    """Run `playwright install chromium`, printing manual steps on failure."""
    command = [sys.executable, "-m", "playwright", "install"]
    if with_deps:
        command.append("--with-deps")
    command.append("chromium")

    print(f"Running '{' '.join(command[1:])}'...")
    try:
        result = subprocess.run(command, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        print(f"Error installing Chromium for CATS audits: {e}", file=sys.stderr)
        if e.stderr:
            print(e.stderr, file=sys.stderr)
        print(
            "Please run the following command manually:\n"
            f"  python {' '.join(command[1:])}",
            file=sys.stderr,
        )
        return 1

    if result.stdout:
        print(result.stdout)
    print("Chromium browser installed successfully.")
    return 0


def download_axe_script(destination: Path, url: str = DEFAULT_AXE_SCRIPT_URL) -> int:
    """Save axe.min.js to destination for use as CATS_AXE_SCRIPT_PATH."""
    print(f"Downloading axe-core from {url}...")
    try:
        response = httpx.get(url, follow_redirects=True, timeout=30.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
        print(f"Error downloading axe-core: {e}", file=sys.stderr)
        return 1

    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(response.text, encoding="utf-8")
    print(f"axe-core saved to {destination}")
    print(f"Set CATS_AXE_SCRIPT_PATH={destination} to audit with the local copy.")
    return 0


def postinstall(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="cats-postinstall",
        description="Install the browser (and optionally axe-core) CATS audits with",
    )
    parser.add_argument(
        "--with-deps",
        action="store_true",
        default=settings.IS_CLOUD_RUN,
        help="Also install Chromium's system libraries (default on Cloud Run)",
    )
    parser.add_argument(
        "--axe-script",
        type=Path,
        help="Download axe.min.js to this path",
    )
    parser.add_argument(
        "--axe-url",
        default=DEFAULT_AXE_SCRIPT_URL,
        help="Where to download axe.min.js from",
    )
    args = parser.parse_args(argv)

    print("Checking for browser installation...")
    try:
        from playwright.async_api import async_playwright  # noqa: F401
    except ImportError:
        print(
            "Playwright is not installed. Skipping browser setup.\n"
            "To install, run: pip install cats-crawler",
            file=sys.stderr,
        )
        return 1

    status = install_chromium(args.with_deps)
    if args.axe_script is not None:
        status = download_axe_script(args.axe_script, args.axe_url) or status
    return status


if __name__ == "__main__":
    sys.exit(postinstall())
