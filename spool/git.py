"""Best-effort git helpers. Failures are logged as warnings and never raised."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path


logger = logging.getLogger(__name__)

GIT_TIMEOUT = 60


def _git(args: list[str], cwd: str | Path) -> subprocess.CompletedProcess | None:
    try:
        return subprocess.run(
            ['git', *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
        logger.warning('git %s failed: %s', args[0], exc)
        return None


def current_branch(cwd: str | Path) -> str | None:
    result = _git(['rev-parse', '--abbrev-ref', 'HEAD'], cwd)
    if result is None or result.returncode != 0:
        return None
    return result.stdout.strip() or None


def create_branch(name: str, cwd: str | Path) -> bool:
    """Create and check out *name*. Returns False (and stays on the current branch) on failure."""
    result = _git(['checkout', '-b', name], cwd)
    if result is None or result.returncode != 0:
        detail = result.stderr.strip() if result is not None else ''
        logger.warning('Could not create branch %s, continuing on current branch: %s', name, detail)
        return False
    return True


def commit_all(message: str, cwd: str | Path) -> bool:
    """Stage everything and commit; empty commits are allowed."""
    staged = _git(['add', '-A'], cwd)
    if staged is None or staged.returncode != 0:
        detail = staged.stderr.strip() if staged is not None else ''
        logger.warning('git add failed, skipping commit "%s": %s', message, detail)
        return False

    result = _git(['commit', '--allow-empty', '-m', message], cwd)
    if result is None or result.returncode != 0:
        detail = result.stderr.strip() if result is not None else ''
        logger.warning('git commit "%s" failed: %s', message, detail)
        return False
    return True


def log_oneline(since: str, cwd: str | Path) -> str | None:
    """``git log --oneline <since>..HEAD``; None when the log can't be read."""
    result = _git(['log', '--oneline', f'{since}..HEAD'], cwd)
    if result is None or result.returncode != 0:
        detail = result.stderr.strip() if result is not None else ''
        logger.warning('git log since %s failed: %s', since, detail)
        return None
    return result.stdout.strip()
