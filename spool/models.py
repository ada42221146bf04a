"""Pydantic models for spool runs, stories, workflow formulas and configuration."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from spool import constants


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class StoryStatus(StrEnum):
    pending = 'pending'
    running = 'running'
    done = 'done'
    failed = 'failed'


class RunStatus(StrEnum):
    planning = 'planning'
    running = 'running'
    verifying = 'verifying'
    done = 'done'
    failed = 'failed'


class StepKind(StrEnum):
    plan = 'plan'
    loop = 'loop'
    learnings = 'learnings'
    single = 'single'


TERMINAL_RUN_STATUSES = frozenset({RunStatus.done, RunStatus.failed})

_RUN_STATUS_ORDER: dict[RunStatus, int] = {
    RunStatus.planning: 0,
    RunStatus.running: 1,
    RunStatus.verifying: 2,
    RunStatus.done: 3,
    RunStatus.failed: 3,
}


# ---------------------------------------------------------------------------
# Story
# ---------------------------------------------------------------------------


class Story(BaseModel):
    id: str
    title: str
    description: str = ''
    acceptance_criteria: list[str] = Field(default_factory=list)
    status: StoryStatus = StoryStatus.pending
    retry_count: int = 0
    max_retries: int = constants.MAX_RETRIES
    verify_feedback: str | None = None
    output: str | None = None

    @field_validator('max_retries')
    @classmethod
    def max_retries_not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError('must not be negative')
        return v

    @model_validator(mode='after')
    def retries_within_budget(self) -> Story:
        if self.retry_count > self.max_retries:
            raise ValueError(f'retry_count ({self.retry_count}) exceeds max_retries ({self.max_retries})')
        return self

    @property
    def is_open(self) -> bool:
        return self.status in (StoryStatus.pending, StoryStatus.running)


# ---------------------------------------------------------------------------
# Workflow run
# ---------------------------------------------------------------------------


class WorkflowRun(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    workflow: str
    task: str
    status: RunStatus = RunStatus.planning
    stories: list[Story] = Field(default_factory=list)
    branch: str = ''
    progress: list[str] = Field(default_factory=list)
    learnings: list[str] = Field(default_factory=list)
    iteration: int = 0
    max_iterations: int = constants.MAX_ITERATIONS
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def advance(self, status: RunStatus) -> None:
        """Move the run forward. Backward moves and changes after a terminal status raise."""
        if self.is_finished:
            raise RuntimeError(f'Run {self.id} is already {self.status}; cannot move to {status}')
        if _RUN_STATUS_ORDER[status] < _RUN_STATUS_ORDER[self.status]:
            raise RuntimeError(f'Run {self.id} cannot move back from {self.status} to {status}')
        self.status = status
        self.touch()

    def touch(self) -> None:
        self.updated_at = now_iso()

    def count_done(self) -> int:
        return sum(1 for s in self.stories if s.status == StoryStatus.done)

    def count_remaining(self) -> int:
        return sum(1 for s in self.stories if s.status != StoryStatus.done)

    def has_open_stories(self) -> bool:
        return any(s.is_open for s in self.stories)

    def find_story(self, story_id: str) -> Story | None:
        for story in self.stories:
            if story.id == story_id:
                return story
        return None


# ---------------------------------------------------------------------------
# Workflow formula
# ---------------------------------------------------------------------------

_LEARNINGS_NAMES = frozenset({'compound', 'learn', 'learnings'})
_PLAN_NAMES = frozenset({'plan', 'planner'})


class VarDef(BaseModel):
    description: str = ''
    required: bool = False
    default: str | None = None


class WorkflowStep(BaseModel):
    id: str
    agent: str
    description: str | None = None
    needs: list[str] = Field(default_factory=list)
    for_each: str | None = None
    verifier: str | None = None
    max_retries: int | None = Field(default=None, ge=0)
    always: bool = False
    kind: StepKind | None = None


def resolve_step_kind(step: WorkflowStep, index: int) -> StepKind:
    """Decide how the engine dispatches a step. Resolved once, when the formula loads."""
    if step.kind is not None:
        return step.kind
    if step.for_each:
        return StepKind.loop
    if step.id in _LEARNINGS_NAMES or step.agent in _LEARNINGS_NAMES:
        return StepKind.learnings
    if index == 0 and (step.id in _PLAN_NAMES or step.agent in _PLAN_NAMES):
        return StepKind.plan
    return StepKind.single


class WorkflowFormula(BaseModel):
    name: str
    description: str = ''
    vars: dict[str, VarDef] = Field(default_factory=dict)
    steps: list[WorkflowStep]

    @field_validator('steps')
    @classmethod
    def steps_not_empty(cls, v: list[WorkflowStep]) -> list[WorkflowStep]:
        if not v:
            raise ValueError('must not be empty')
        return v

    @model_validator(mode='after')
    def validate_step_graph(self) -> WorkflowFormula:
        errors: list[str] = []
        seen: set[str] = set()
        for i, step in enumerate(self.steps):
            if step.id in seen:
                errors.append(f"steps[{i}].id: duplicate '{step.id}'")
            for dep in step.needs:
                if dep not in seen:
                    errors.append(f"steps[{i}].needs: '{dep}' is not an earlier step")
            seen.add(step.id)

            step.kind = resolve_step_kind(step, i)
            if step.kind == StepKind.plan and i != 0:
                errors.append(f"steps[{i}]: plan step '{step.id}' must be the first step")
        if errors:
            raise ValueError('; '.join(errors))
        return self

    def find_step(self, step_id: str) -> WorkflowStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


# ---------------------------------------------------------------------------
# Agent definition
# ---------------------------------------------------------------------------


class OutputSpec(BaseModel):
    format: Literal['json', 'markdown', 'text'] = 'text'
    path: str | None = None
    schema_ref: str | None = Field(default=None, alias='schema')


class AgentDefinition(BaseModel):
    name: str
    description: str = ''
    prompt: str = ''
    context: list[str] = Field(default_factory=list)
    output: OutputSpec | None = None


# ---------------------------------------------------------------------------
# Project configuration (spool.yaml)
# ---------------------------------------------------------------------------


class AdapterConfig(BaseModel):
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    timeout: int | None = None
    env: dict[str, str] = Field(default_factory=dict)
    use_acp: bool = False


class LoopConfig(BaseModel):
    max_retries: int = Field(default=constants.MAX_RETRIES, ge=0)
    max_iterations: int = constants.MAX_ITERATIONS
    verify: bool = True


class LearningsConfig(BaseModel):
    auto: bool = True
    inject: bool = True


class SpoolConfig(BaseModel):
    version: int = 1
    adapter: str = constants.ADAPTER
    adapters: dict[str, AdapterConfig] = Field(default_factory=dict)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    learnings: LearningsConfig = Field(default_factory=LearningsConfig)

    def adapter_config(self, name: str | None = None) -> AdapterConfig:
        return self.adapters.get(name or self.adapter) or AdapterConfig()
