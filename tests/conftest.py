"""Shared fixtures: a scripted in-process adapter and a project directory with agents."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from spool.adapter import AdapterStatus, AgentResult, ExecutionContext
from spool.models import AgentDefinition


Reply = str | Exception | Callable[[ExecutionContext], str]


class ScriptedAdapter:
    """Adapter whose replies are scripted per agent name.

    Each agent gets a list of replies consumed in order; the last one repeats.
    A reply may be a string, an exception to raise, or a callable taking the
    execution context.
    """

    name = 'scripted'

    def __init__(self, script: dict[str, list[Reply]] | None = None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.calls: list[tuple[str, ExecutionContext]] = []
        self.cleaned_up = 0

    def validate(self) -> AdapterStatus:
        return AdapterStatus(installed=True, version='test')

    def exec(self, agent: AgentDefinition, context: ExecutionContext) -> AgentResult:
        self.calls.append((agent.name, context))
        replies = self.script.get(agent.name) or ['']
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(context)
        return AgentResult(output=reply, duration_ms=1)

    def cleanup(self) -> None:
        self.cleaned_up += 1

    def agents_called(self) -> list[str]:
        return [name for name, _ in self.calls]


PLAN_OUTPUT = """\
Here is the plan:

```json
[
  {"id": "s1", "title": "First", "description": "do one", "acceptance_criteria": ["one works"]},
  {"id": "s2", "title": "Second", "description": "do two", "acceptance_criteria": ["two works"]}
]
```
"""

AGENT_NAMES = ('planner', 'developer', 'verifier', 'tester', 'compound')


@pytest.fixture
def agents() -> dict[str, AgentDefinition]:
    return {name: AgentDefinition(name=name, prompt=f'You are the {name}.') for name in AGENT_NAMES}


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    project = tmp_path / 'project'
    project.mkdir()
    return project
