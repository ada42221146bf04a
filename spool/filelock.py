"""Exclusive file lock using fcntl.

Used to serialize ledger appends and learnings writes when several spool
processes share one ``.spool`` directory.
"""

from __future__ import annotations

import fcntl
import time
from pathlib import Path


class FileLockTimeout(TimeoutError):
    """Raised when a FileLock cannot be acquired within the timeout period."""


class FileLock:
    """Exclusive lock held on a sidecar ``.lock`` file.

    Args:
        path: Path to the lock file. Parent directories are created.
        timeout: Maximum seconds to wait for the lock. ``None`` blocks
            until the lock is free.
    """

    poll_interval = 0.05

    def __init__(self, path: str | Path, timeout: float | None = None):
        self.path = Path(path)
        self.timeout = timeout
        self.fd = None

    def __enter__(self) -> FileLock:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.fd = open(self.path, 'a')
        if self.timeout is None:
            fcntl.lockf(self.fd, fcntl.LOCK_EX)
            return self

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.lockf(self.fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return self
            except OSError:
                if time.monotonic() >= deadline:
                    self.fd.close()
                    self.fd = None
                    raise FileLockTimeout(f'Could not acquire lock on {self.path} within {self.timeout}s')
                time.sleep(self.poll_interval)

    def __exit__(self, *exc) -> None:
        if self.fd is None:
            return
        fcntl.lockf(self.fd, fcntl.LOCK_UN)
        self.fd.close()
        self.fd = None
