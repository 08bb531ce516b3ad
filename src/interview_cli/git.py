"""Git helpers used to label sessions with the branch they were started from."""

from __future__ import annotations

import subprocess
from pathlib import Path


def _run_git(args: list[str], cwd: Path) -> str | None:
    """Run a read-only git command, returning stripped stdout or None on failure."""
    try:
        result = subprocess.run(
            ["git", *args],
            check=True,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            cwd=cwd,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None
    return result.stdout.strip()


def get_current_branch(path: Path | None = None) -> str | None:
    """Branch checked out at ``path``.

    Returns ``None`` outside a repository, on detached HEAD, or when git is
    not installed.
    """
    repo_path = (path or Path.cwd()).resolve()
    if not repo_path.is_dir():
        return None

    branch = _run_git(["branch", "--show-current"], repo_path)
    if branch is None:
        # git < 2.22 has no --show-current; rev-parse prints "HEAD" when detached
        branch = _run_git(["rev-parse", "--abbrev-ref", "HEAD"], repo_path)
    if branch == "HEAD":
        return None
    return branch or None
