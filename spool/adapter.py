"""Execution adapter protocol, shared result types and adapter registry.

An adapter runs a named agent with a composed prompt and returns its text.
The orchestration core only ever talks to this interface, so it stays
agnostic to whether a call spawns a process or reuses a persistent session.

Usage::

    adapter = get_adapter('claude-code', config.adapter_config('claude-code'))
    result = adapter.exec(agent, context)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol, runtime_checkable

from spool import constants
from spool.models import AdapterConfig, AgentDefinition


logger = logging.getLogger(__name__)


class AdapterError(Exception):
    """Raised when an agent call cannot produce usable output.

    Covers a missing executable, a timeout without useful partial output,
    a non-zero exit, and an unexpectedly closed channel. Adapters never retry.
    """


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class ExecOutcome(StrEnum):
    success = 'success'
    degraded = 'degraded'


@dataclass
class AdapterStatus:
    installed: bool
    version: str | None = None
    error: str | None = None


@dataclass
class ExecutionContext:
    """Everything an adapter needs for one agent call."""

    prompt: str
    project_dir: str
    spool_dir: str
    run_id: str = 'manual'
    step_id: str = ''
    feedback: str | None = None
    steering: dict[str, str] = field(default_factory=dict)
    vars: dict[str, str] = field(default_factory=dict)
    timeout: int | None = None


@dataclass
class AgentResult:
    output: str = ''
    exit_code: int = 0
    duration_ms: int = 0
    outcome: ExecOutcome = ExecOutcome.success

    @property
    def degraded(self) -> bool:
        return self.outcome == ExecOutcome.degraded


# Three-valued completion of an external process, classified before any
# exception is raised.


@dataclass(frozen=True)
class Success:
    output: str


@dataclass(frozen=True)
class DegradedSuccess:
    output: str
    reason: str


@dataclass(frozen=True)
class Failure:
    reason: str


Completion = Success | DegradedSuccess | Failure


def classify_completion(
    output: str,
    exit_code: int,
    *,
    timed_out: bool = False,
    error: str = '',
    min_chars: int = constants.PARTIAL_OUTPUT_MIN_CHARS,
) -> Completion:
    """Classify a finished (or killed) agent process.

    A clean exit is a success. A timeout or non-zero exit still counts when the
    agent produced more than *min_chars* of output before dying.
    """
    if not timed_out and exit_code == 0:
        return Success(output)

    reason = 'timed out' if timed_out else f'exited with code {exit_code}'
    if error.strip():
        reason = f'{reason}: {error.strip()}'
    if len(output) > min_chars:
        return DegradedSuccess(output, reason)
    return Failure(reason)


def to_agent_result(completion: Completion, agent_name: str, exit_code: int, duration_ms: int) -> AgentResult:
    """Turn a completion into an :class:`AgentResult`, raising :class:`AdapterError` on failure."""
    if isinstance(completion, Failure):
        raise AdapterError(f"Agent '{agent_name}' failed: {completion.reason}")
    if isinstance(completion, DegradedSuccess):
        logger.warning(
            "Agent '%s' %s; using %d chars of partial output",
            agent_name,
            completion.reason,
            len(completion.output),
        )
        return AgentResult(
            output=completion.output,
            exit_code=exit_code or 1,
            duration_ms=duration_ms,
            outcome=ExecOutcome.degraded,
        )
    return AgentResult(output=completion.output, exit_code=0, duration_ms=duration_ms)


# ---------------------------------------------------------------------------
# Prompt composition
# ---------------------------------------------------------------------------


def compose_prompt(agent: AgentDefinition, context: ExecutionContext) -> str:
    """Build the full text sent to an agent.

    Order: steering context blocks, the agent's own prompt, the task prompt,
    then feedback from the previous attempt.
    """
    parts: list[str] = []

    if context.steering:
        for label, content in context.steering.items():
            parts.append(f'## {label}\n\n{content}')
        parts.append('---\n')

    if agent.prompt:
        parts.append(agent.prompt)

    if context.prompt:
        parts.append('\n---\n')
        parts.append(context.prompt)

    if context.feedback:
        parts.append('\n---\n## Previous Attempt Feedback\n')
        parts.append(context.feedback)

    return '\n'.join(parts)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class Adapter(Protocol):
    name: str

    def validate(self) -> AdapterStatus: ...

    def exec(self, agent: AgentDefinition, context: ExecutionContext) -> AgentResult: ...

    def cleanup(self) -> None: ...


AdapterFactory = Callable[[AdapterConfig], Adapter]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_ADAPTER_REGISTRY: dict[str, AdapterFactory] = {}


def register_adapter(name: str, factory: AdapterFactory) -> None:
    _ADAPTER_REGISTRY[name] = factory


def _register_builtins() -> None:
    from spool.adapters.claude_code import ClaudeCodeAdapter
    from spool.adapters.kiro import KiroAdapter

    _ADAPTER_REGISTRY.setdefault('claude-code', ClaudeCodeAdapter)
    _ADAPTER_REGISTRY.setdefault('kiro', KiroAdapter)


def available_adapters() -> list[str]:
    _register_builtins()
    return sorted(_ADAPTER_REGISTRY)


def get_adapter(name: str | None = None, config: AdapterConfig | None = None) -> Adapter:
    """Instantiate an adapter by name (default: ``SPOOL_ADAPTER`` or ``claude-code``)."""
    if name is None:
        name = os.environ.get('SPOOL_ADAPTER', constants.ADAPTER)
    if name not in _ADAPTER_REGISTRY:
        _register_builtins()
    factory = _ADAPTER_REGISTRY.get(name)
    if factory is None:
        raise ValueError(f'Unknown agent adapter: {name}. Available: {", ".join(available_adapters())}')
    return factory(config or AdapterConfig())
