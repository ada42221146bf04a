"""Task ledger: append-only JSONL event log.

Records workflow runs, step transitions, Ralph loop iterations and learnings.
Stored at ``.spool/ledger.jsonl``. The ledger, not the in-memory
:class:`~spool.models.WorkflowRun`, is the authoritative history of a run.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from spool.filelock import FileLock, FileLockTimeout


LOCK_TIMEOUT: int = 30


class LedgerError(Exception):
    """Raised when the ledger cannot be read or written."""


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    run_id: str
    timestamp: str


class RunStart(_Event):
    type: Literal['run_start'] = 'run_start'
    workflow: str
    adapter: str
    task: str


class RunComplete(_Event):
    type: Literal['run_complete'] = 'run_complete'
    workflow: str
    status: Literal['pass', 'fail']


class StepStart(_Event):
    type: Literal['step_start'] = 'step_start'
    step: str
    agent: str


class StepComplete(_Event):
    type: Literal['step_complete'] = 'step_complete'
    step: str
    status: Literal['pass', 'fail', 'skip']
    duration_ms: int


class LoopStart(_Event):
    type: Literal['loop_start'] = 'loop_start'
    step: str
    story_id: str
    attempt: int


class LoopPass(_Event):
    type: Literal['loop_pass'] = 'loop_pass'
    step: str
    story_id: str
    attempt: int


class LoopFail(_Event):
    type: Literal['loop_fail'] = 'loop_fail'
    step: str
    story_id: str
    attempt: int
    feedback: str


class LoopExhausted(_Event):
    type: Literal['loop_exhausted'] = 'loop_exhausted'
    step: str
    story_id: str
    attempts: int


class Learning(_Event):
    type: Literal['learning'] = 'learning'
    content: str


LedgerEvent = Annotated[
    RunStart | RunComplete | StepStart | StepComplete | LoopStart | LoopPass | LoopFail | LoopExhausted | Learning,
    Field(discriminator='type'),
]

_event_adapter: TypeAdapter[LedgerEvent] = TypeAdapter(LedgerEvent)


def parse_event(data: dict) -> LedgerEvent:
    return _event_adapter.validate_python(data)


class RunSummary(BaseModel):
    run_id: str
    workflow: str
    status: str
    timestamp: str


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class Ledger:
    """Append-only event log backed by a JSONL file.

    Appends are serialized across processes with a :class:`FileLock` on
    ``<path>.lock`` and within a process with a thread lock. Prior content is
    never rewritten.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._last_timestamp = ''

    def now(self) -> str:
        """Return an ISO timestamp never earlier than the last one handed out."""
        ts = datetime.now(UTC).isoformat()
        with self._lock:
            if ts < self._last_timestamp:
                ts = self._last_timestamp
            self._last_timestamp = ts
        return ts

    def append(self, event: LedgerEvent) -> None:
        line = event.model_dump_json(by_alias=True)
        try:
            with self._lock, FileLock(str(self.path) + '.lock', timeout=LOCK_TIMEOUT):
                with open(self.path, 'a', encoding='utf-8') as f:
                    f.write(line + '\n')
                    f.flush()
                    os.fsync(f.fileno())
        except (OSError, FileLockTimeout) as exc:
            raise LedgerError(f'Failed to append to ledger {self.path}: {exc}') from exc

    def read(self) -> list[LedgerEvent]:
        if not self.path.exists():
            return []
        try:
            content = self.path.read_text(encoding='utf-8')
        except OSError as exc:
            raise LedgerError(f'Failed to read ledger {self.path}: {exc}') from exc

        events: list[LedgerEvent] = []
        for lineno, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                events.append(parse_event(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as exc:
                raise LedgerError(f'{self.path}:{lineno}: malformed ledger event: {exc}') from exc
        return events

    def get_run_events(self, run_id: str) -> list[LedgerEvent]:
        return [e for e in self.read() if e.run_id == run_id]

    def get_latest_run_id(self) -> str | None:
        for event in reversed(self.read()):
            if event.type == 'run_start':
                return event.run_id
        return None

    def get_runs(self) -> list[RunSummary]:
        """Fold ``run_start``/``run_complete`` pairs into one summary per run, in start order."""
        runs: dict[str, RunSummary] = {}
        for event in self.read():
            if isinstance(event, RunStart):
                runs[event.run_id] = RunSummary(
                    run_id=event.run_id,
                    workflow=event.workflow,
                    status='running',
                    timestamp=event.timestamp,
                )
            elif isinstance(event, RunComplete):
                summary = runs.get(event.run_id)
                if summary is not None:
                    summary.status = event.status
        return list(runs.values())
