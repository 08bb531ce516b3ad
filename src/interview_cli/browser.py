"""Open a URL in the user's browser."""

from __future__ import annotations

import logging
import subprocess
import sys

from interview_cli.errors import BrowserLaunchError

logger = logging.getLogger(__name__)


def browser_command(url: str, browser: str | None = None, platform: str | None = None) -> list[str]:
    """Build the platform launcher command for ``url``."""
    platform = platform or sys.platform
    if platform == "darwin":
        return ["open", "-a", browser, url] if browser else ["open", url]
    if platform == "win32":
        return ["cmd", "/c", "start", "", browser, url] if browser else ["cmd", "/c", "start", "", url]
    return [browser or "xdg-open", url]


def open_url(url: str, browser: str | None = None) -> None:
    """Launch the browser and wait for the launcher to exit.

    Raises:
        BrowserLaunchError: If the launcher is missing or exits non-zero
    """
    cmd = browser_command(url, browser)
    logger.debug("Opening browser with %s", cmd[0])
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True, errors="replace")
    except FileNotFoundError as e:
        raise BrowserLaunchError(f"Browser command not found: {cmd[0]}") from e
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit code {e.returncode}"
        raise BrowserLaunchError(f"Failed to open browser ({cmd[0]}): {detail}") from e
