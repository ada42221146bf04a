"""Tests for spool.models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from spool.models import (
    AdapterConfig,
    AgentDefinition,
    RunStatus,
    SpoolConfig,
    StepKind,
    Story,
    StoryStatus,
    WorkflowFormula,
    WorkflowRun,
    WorkflowStep,
)


def _make_story(story_id: str = 's1', status: StoryStatus = StoryStatus.pending, **kw) -> Story:
    return Story(id=story_id, title=f'Story {story_id}', status=status, **kw)


def _make_formula(*steps: dict) -> WorkflowFormula:
    return WorkflowFormula.model_validate({'name': 'wf', 'steps': list(steps)})


# ---------------------------------------------------------------------------
# Story
# ---------------------------------------------------------------------------


class TestStory:
    def test_defaults(self):
        story = Story(id='a', title='T')
        assert story.status == StoryStatus.pending
        assert story.retry_count == 0
        assert story.acceptance_criteria == []
        assert story.verify_feedback is None
        assert story.is_open

    def test_retry_count_cannot_exceed_max_retries(self):
        with pytest.raises(ValidationError, match='exceeds max_retries'):
            Story(id='a', title='T', retry_count=4, max_retries=3)

    def test_zero_max_retries_allowed(self):
        assert Story(id='a', title='T', max_retries=0).max_retries == 0

    def test_negative_max_retries_rejected(self):
        with pytest.raises(ValidationError, match='must not be negative'):
            Story(id='a', title='T', max_retries=-1)

    def test_done_and_failed_are_not_open(self):
        assert not _make_story(status=StoryStatus.done).is_open
        assert not _make_story(status=StoryStatus.failed).is_open
        assert _make_story(status=StoryStatus.running).is_open


# ---------------------------------------------------------------------------
# WorkflowRun
# ---------------------------------------------------------------------------


class TestWorkflowRun:
    def test_defaults(self):
        run = WorkflowRun(workflow='wf', task='do it')
        assert len(run.id) == 8
        assert run.status == RunStatus.planning
        assert run.iteration == 0
        assert run.progress == []
        assert run.created_at

    def test_ids_are_unique(self):
        ids = {WorkflowRun(workflow='wf', task='t').id for _ in range(20)}
        assert len(ids) == 20

    def test_counters(self):
        run = WorkflowRun(
            workflow='wf',
            task='t',
            stories=[
                _make_story('a', StoryStatus.done),
                _make_story('b', StoryStatus.failed),
                _make_story('c', StoryStatus.pending),
            ],
        )
        assert run.count_done() == 1
        assert run.count_remaining() == 2
        assert run.has_open_stories()
        assert run.find_story('b').status == StoryStatus.failed
        assert run.find_story('zzz') is None

    def test_advance_forward(self):
        run = WorkflowRun(workflow='wf', task='t')
        run.advance(RunStatus.running)
        run.advance(RunStatus.done)
        assert run.status == RunStatus.done
        assert run.is_finished

    def test_advance_backward_raises(self):
        run = WorkflowRun(workflow='wf', task='t', status=RunStatus.running)
        with pytest.raises(RuntimeError, match='cannot move back'):
            run.advance(RunStatus.planning)

    def test_terminal_status_is_immutable(self):
        run = WorkflowRun(workflow='wf', task='t')
        run.advance(RunStatus.failed)
        with pytest.raises(RuntimeError, match='already failed'):
            run.advance(RunStatus.done)

    def test_planning_can_finish_directly(self):
        run = WorkflowRun(workflow='wf', task='t')
        run.advance(RunStatus.done)
        assert run.status == RunStatus.done


# ---------------------------------------------------------------------------
# WorkflowFormula and step kinds
# ---------------------------------------------------------------------------


class TestStepKindResolution:
    def test_feature_dev_shape(self):
        formula = _make_formula(
            {'id': 'plan', 'agent': 'planner'},
            {'id': 'implement', 'agent': 'developer', 'for_each': 'stories', 'verifier': 'verifier'},
            {'id': 'test', 'agent': 'tester'},
            {'id': 'compound', 'agent': 'compound'},
        )
        assert [s.kind for s in formula.steps] == [
            StepKind.plan,
            StepKind.loop,
            StepKind.single,
            StepKind.learnings,
        ]

    def test_explicit_kind_wins(self):
        formula = _make_formula({'id': 'review', 'agent': 'reviewer', 'kind': 'learnings'})
        assert formula.steps[0].kind == StepKind.learnings

    def test_first_step_named_otherwise_is_single(self):
        formula = _make_formula({'id': 'triage', 'agent': 'triager'}, {'id': 'fix', 'agent': 'developer'})
        assert formula.steps[0].kind == StepKind.single

    def test_plan_agent_after_first_step_is_single(self):
        formula = _make_formula({'id': 'scan', 'agent': 'scanner'}, {'id': 'replan', 'agent': 'planner'})
        assert formula.steps[1].kind == StepKind.single

    def test_explicit_plan_not_first_is_rejected(self):
        with pytest.raises(ValidationError, match='must be the first step'):
            _make_formula({'id': 'scan', 'agent': 'scanner'}, {'id': 'p', 'agent': 'x', 'kind': 'plan'})

    def test_for_each_wins_over_name(self):
        formula = _make_formula({'id': 'plan', 'agent': 'planner', 'for_each': 'stories'})
        assert formula.steps[0].kind == StepKind.loop


class TestWorkflowFormulaValidation:
    def test_duplicate_step_ids(self):
        with pytest.raises(ValidationError, match="duplicate 'a'"):
            _make_formula({'id': 'a', 'agent': 'x'}, {'id': 'a', 'agent': 'y'})

    def test_needs_must_reference_earlier_step(self):
        with pytest.raises(ValidationError, match="'b' is not an earlier step"):
            _make_formula({'id': 'a', 'agent': 'x', 'needs': ['b']}, {'id': 'b', 'agent': 'y'})

    def test_self_reference_rejected(self):
        with pytest.raises(ValidationError):
            _make_formula({'id': 'a', 'agent': 'x', 'needs': ['a']})

    def test_needs_backward_ok(self):
        formula = _make_formula({'id': 'a', 'agent': 'x'}, {'id': 'b', 'agent': 'y', 'needs': ['a']})
        assert formula.find_step('b').needs == ['a']

    def test_empty_steps_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowFormula(name='wf', steps=[])

    def test_step_defaults(self):
        step = WorkflowStep(id='a', agent='x')
        assert step.needs == []
        assert step.for_each is None
        assert step.always is False
        assert step.kind is None


# ---------------------------------------------------------------------------
# Agent definitions and config
# ---------------------------------------------------------------------------


class TestAgentDefinition:
    def test_output_schema_alias(self):
        agent = AgentDefinition.model_validate(
            {'name': 'planner', 'output': {'format': 'json', 'schema': 'stories.schema.json'}}
        )
        assert agent.output.format == 'json'
        assert agent.output.schema_ref == 'stories.schema.json'

    def test_invalid_output_format(self):
        with pytest.raises(ValidationError):
            AgentDefinition.model_validate({'name': 'a', 'output': {'format': 'xml'}})


class TestSpoolConfig:
    def test_defaults(self):
        config = SpoolConfig()
        assert config.version == 1
        assert config.loop.max_retries == 3
        assert config.loop.max_iterations == 15
        assert config.loop.verify is True
        assert config.learnings.auto is True
        assert config.learnings.inject is True

    def test_adapter_config_lookup(self):
        config = SpoolConfig(adapter='kiro', adapters={'kiro': AdapterConfig(timeout=60, use_acp=True)})
        assert config.adapter_config().timeout == 60
        assert config.adapter_config('kiro').use_acp is True
        assert config.adapter_config('claude-code') == AdapterConfig()

    def test_loop_max_retries_zero_allowed(self):
        config = SpoolConfig.model_validate({'loop': {'max_retries': 0}})
        assert config.loop.max_retries == 0

    def test_negative_loop_max_retries_rejected(self):
        with pytest.raises(ValidationError):
            SpoolConfig.model_validate({'loop': {'max_retries': -1}})

    def test_negative_step_max_retries_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowStep(id='implement', agent='developer', for_each='stories', max_retries=-1)
