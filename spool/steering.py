"""Steering context and accumulated learnings.

Steering files live under ``<spool_dir>/steering/`` and are referenced by
agent definitions; their content is prepended verbatim to every prompt the
agent receives. ``steering/learnings.md`` collects dated learnings from
previous runs and is injected into every agent when enabled.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from spool import constants
from spool.filelock import FileLock
from spool.models import AgentDefinition, LearningsConfig


logger = logging.getLogger(__name__)


class LearningsStore:
    def __init__(self, spool_dir: str | Path, config: LearningsConfig | None = None):
        self.spool_dir = Path(spool_dir)
        self.config = config or LearningsConfig()
        self.path = self.spool_dir / constants.LEARNINGS_FILE

    @property
    def should_inject(self) -> bool:
        return self.config.inject

    @property
    def should_auto_extract(self) -> bool:
        return self.config.auto

    def read(self) -> str:
        if not self.path.exists():
            return ''
        return self.path.read_text(encoding='utf-8')

    def append(self, entry: str) -> None:
        """Append *entry* as a ``## YYYY-MM-DD`` block."""
        date = datetime.now(UTC).strftime('%Y-%m-%d')
        block = f'\n## {date}\n\n{entry.strip()}\n'
        with FileLock(str(self.path) + '.lock', timeout=30):
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(block)
        logger.info('Appended learnings to %s', self.path)

    def injectable(self) -> str | None:
        """Learnings content for prompt injection, or ``None`` if disabled or empty."""
        if not self.should_inject:
            return None
        content = self.read()
        if not content.strip():
            return None
        return content


class SteeringResolver:
    def __init__(self, spool_dir: str | Path, learnings: LearningsStore):
        self.spool_dir = Path(spool_dir)
        self.learnings = learnings

    def resolve(self, agent: AgentDefinition) -> dict[str, str]:
        """Map each existing context file of *agent* (plus learnings) to its content.

        Missing context files are skipped with a debug message.
        """
        content: dict[str, str] = {}
        for ref in agent.context:
            path = self.spool_dir / ref
            if path.is_file():
                content[ref] = path.read_text(encoding='utf-8')
            else:
                logger.debug("Context file '%s' for agent '%s' not found", ref, agent.name)

        learnings = self.learnings.injectable()
        if learnings:
            content[constants.LEARNINGS_FILE] = learnings
        return content

    def list(self) -> list[str]:
        steering_dir = self.spool_dir / 'steering'
        if not steering_dir.is_dir():
            return []
        return sorted(p.name for p in steering_dir.iterdir() if p.suffix == '.md')
