"""Run snapshot I/O: one JSON document per run under ``<spool_dir>/runs/``.

Snapshots are for point-in-time inspection; the ledger stays authoritative.
A snapshot may carry an out-of-band ``"stop_requested": true`` marker, which
asks the orchestrator to stop after the step in progress.
"""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any

from spool.filelock import FileLock
from spool.models import WorkflowRun


LOCK_TIMEOUT: int = 60
STOP_MARKER = 'stop_requested'


def run_path(runs_dir: Path, run_id: str) -> Path:
    return Path(runs_dir) / f'{run_id}.json'


def _lock(path: Path) -> FileLock:
    return FileLock(str(path) + '.lock', timeout=LOCK_TIMEOUT)


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding='utf-8'))


def _write_atomic(data: dict[str, Any], path: Path) -> None:
    """Write to a temp file in the same directory, then rename."""
    content = json.dumps(data, indent=2)
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=parent, suffix='.tmp', prefix='.run_')
    try:
        with open(fd, 'w', encoding='utf-8') as f:
            f.write(content)
            f.write('\n')
        Path(tmp_path).rename(path)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


def save_run(run: WorkflowRun, runs_dir: Path) -> Path:
    """Persist *run* atomically, keeping a stop marker written by someone else."""
    path = run_path(runs_dir, run.id)
    data = run.model_dump(mode='json')
    with _lock(path):
        if _read_json(path).get(STOP_MARKER):
            data[STOP_MARKER] = True
        _write_atomic(data, path)
    return path


def load_run(path: Path) -> WorkflowRun:
    data = json.loads(Path(path).read_text(encoding='utf-8'))
    data.pop(STOP_MARKER, None)
    return WorkflowRun.model_validate(data)


def stop_requested(runs_dir: Path, run_id: str) -> bool:
    path = run_path(runs_dir, run_id)
    try:
        return bool(_read_json(path).get(STOP_MARKER))
    except json.JSONDecodeError:
        return False


def request_stop(runs_dir: Path, run_id: str) -> bool:
    """Mark a persisted run to stop after its current step. Returns False if no snapshot exists."""
    path = run_path(runs_dir, run_id)
    if not path.exists():
        return False
    with _lock(path):
        data = _read_json(path)
        data[STOP_MARKER] = True
        _write_atomic(data, path)
    return True
