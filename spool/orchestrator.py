"""Workflow orchestrator: the public ``run(workflow, task)`` API.

Drives one workflow formula step by step, strictly in declaration order:

* ``plan`` steps decompose the task into stories;
* ``loop`` steps hand the stories to the :class:`~spool.loop.RalphLoop`;
* ``learnings`` steps summarize the run and record learnings;
* ``single`` steps run their agent once.

Every state transition is appended to the ledger, and a snapshot of the run
is written after every step.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from pathlib import Path

from spool import constants
from spool.adapter import Adapter, AdapterError
from spool.config import ConfigError, load_workflows
from spool.git import commit_all, create_branch, current_branch
from spool.ledger import Learning, Ledger, LedgerError, RunComplete, RunStart, StepComplete, StepStart
from spool.loop import Committer, RalphLoop
from spool.models import (
    AgentDefinition,
    RunStatus,
    SpoolConfig,
    StepKind,
    StoryStatus,
    WorkflowFormula,
    WorkflowRun,
    WorkflowStep,
)
from spool.prompts import build_learnings_prompt, build_plan_prompt, build_single_prompt
from spool.runner import AgentRunner
from spool.state import save_run, stop_requested
from spool.stories import StoryParseError, parse_stories


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class WorkflowOrchestrator:
    """Runs workflow formulas against one adapter instance.

    The orchestrator owns the adapter for its lifetime and calls its
    ``cleanup()`` at the end of every run.
    """

    def __init__(
        self,
        adapter: Adapter,
        config: SpoolConfig,
        project_dir: str | Path,
        formulas: Mapping[str, WorkflowFormula] | None = None,
        agents: Mapping[str, AgentDefinition] | None = None,
        max_iterations: int | None = None,
        verify: bool | None = None,
        ledger: Ledger | None = None,
        committer: Committer | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.adapter = adapter
        self.config = config
        self.project_dir = Path(project_dir)
        self.spool_dir = self.project_dir / constants.SPOOL_DIR
        self.runs_dir = self.spool_dir / constants.RUNS_DIR
        self._formulas = dict(formulas) if formulas is not None else None
        self.max_iterations = max_iterations or config.loop.max_iterations
        self.verify = config.loop.verify if verify is None else verify
        self.ledger = ledger or Ledger(self.spool_dir / constants.LEDGER_FILE)
        self.committer = committer or commit_all
        self.on_progress = on_progress
        self.runner = AgentRunner(adapter, config, self.project_dir, agents=agents)

    # -- formulas --------------------------------------------------------------

    @property
    def formulas(self) -> dict[str, WorkflowFormula]:
        if self._formulas is None:
            self._formulas = load_workflows(self.spool_dir)
        return self._formulas

    def get_formula(self, workflow: str) -> WorkflowFormula:
        formula = self.formulas.get(workflow)
        if formula is None:
            available = ', '.join(sorted(self.formulas)) or '(none)'
            raise ConfigError(f'Unknown workflow: {workflow}. Available: {available}')
        return formula

    def dry_run(self, workflow: str) -> str:
        """Describe what ``run`` would do for *workflow*, without calling any agent."""
        formula = self.get_formula(workflow)
        lines = [f'Workflow: {formula.name}']
        if formula.description:
            lines.append(f'  {formula.description}')
        for i, step in enumerate(formula.steps, start=1):
            flags: list[str] = []
            if step.verifier:
                flags.append(f'verifier={step.verifier}' + ('' if self.verify else ' (disabled)'))
            if step.max_retries is not None:
                flags.append(f'max_retries={step.max_retries}')
            if step.needs:
                flags.append(f'needs={",".join(step.needs)}')
            if step.always:
                flags.append('always')
            suffix = f' [{", ".join(flags)}]' if flags else ''
            lines.append(f'  {i}. {step.id} ({step.kind}) -> {step.agent}{suffix}')
        lines.append(f'Adapter: {self.adapter.name}, max iterations: {self.max_iterations}')
        return '\n'.join(lines)

    # -- run -------------------------------------------------------------------

    def run(self, workflow: str, task: str) -> WorkflowRun:
        """Execute *workflow* for *task* and return the finished run.

        Unknown workflow names raise :class:`ConfigError` before anything is
        recorded. Step failures fail the run; ledger and snapshot errors
        propagate once the adapter has been cleaned up.
        """
        formula = self.get_formula(workflow)

        run = WorkflowRun(workflow=workflow, task=task, max_iterations=self.max_iterations)
        run.branch = f'spool/{workflow}/{run.id}'
        if not create_branch(run.branch, self.project_dir):
            run.branch = current_branch(self.project_dir) or ''

        try:
            self.ledger.append(
                RunStart(
                    run_id=run.id,
                    timestamp=self.ledger.now(),
                    workflow=workflow,
                    adapter=self.adapter.name,
                    task=task,
                )
            )
            self._progress(f'Run {run.id}: {workflow} ({len(formula.steps)} steps) on {run.branch or "current branch"}')
            save_run(run, self.runs_dir)

            self._run_steps(formula, run)

            final = RunStatus.done if self._all_stories_done(run) else RunStatus.failed
            if not run.is_finished:
                run.advance(final)
            save_run(run, self.runs_dir)
            self.ledger.append(
                RunComplete(
                    run_id=run.id,
                    timestamp=self.ledger.now(),
                    workflow=workflow,
                    status='pass' if run.status == RunStatus.done else 'fail',
                )
            )
        finally:
            self.runner.cleanup()

        self._progress(f'Run {run.id} {run.status}: {run.count_done()}/{len(run.stories)} stories done')
        return run

    def _run_steps(self, formula: WorkflowFormula, run: WorkflowRun) -> None:
        """Execute steps in declaration order until one fails or a stop is requested."""
        for i, step in enumerate(formula.steps, start=1):
            self._progress(f'[{step.id}] {step.kind} step -> {step.agent}')
            self.ledger.append(
                StepStart(run_id=run.id, timestamp=self.ledger.now(), step=step.id, agent=step.agent)
            )
            start = time.monotonic()
            passed = False
            try:
                passed = self._run_step(step, run)
            except LedgerError:
                raise
            except (AdapterError, ConfigError, StoryParseError) as exc:
                self._fail(run, f'[error] {_first_line(exc)}')
                logger.error('Step %s failed: %s', step.id, exc)
            except Exception as exc:
                self._fail(run, f'[error] {_first_line(exc)}')
                logger.exception('Step %s failed unexpectedly', step.id)
            finally:
                duration_ms = int((time.monotonic() - start) * 1000)
                self.ledger.append(
                    StepComplete(
                        run_id=run.id,
                        timestamp=self.ledger.now(),
                        step=step.id,
                        status='pass' if passed else 'fail',
                        duration_ms=duration_ms,
                    )
                )
            save_run(run, self.runs_dir)

            remaining = len(formula.steps) - i
            if run.is_finished:
                if remaining:
                    logger.info('Run %s failed at step %s; %d step(s) not run', run.id, step.id, remaining)
                return
            if remaining and stop_requested(self.runs_dir, run.id):
                self._fail(run, '[stopped] stop requested')
                save_run(run, self.runs_dir)
                self._progress(f'Run {run.id} stopped after step {step.id}')
                return

    def _run_step(self, step: WorkflowStep, run: WorkflowRun) -> bool:
        if step.kind == StepKind.plan:
            self._step_plan(step, run)
            return True
        if step.kind == StepKind.loop:
            return self._step_loop(step, run)
        if step.kind == StepKind.learnings:
            self._step_learnings(step, run)
            return True
        self._step_single(step, run)
        return True

    # -- step kinds ------------------------------------------------------------

    def _step_plan(self, step: WorkflowStep, run: WorkflowRun) -> None:
        result = self.runner.run(step.agent, build_plan_prompt(run), run_id=run.id, step_id=step.id)
        run.stories = parse_stories(result.output, max_retries=self.config.loop.max_retries)
        run.advance(RunStatus.running)
        run.progress.append(f'[{step.id}] planned {len(run.stories)} stories')
        for story in run.stories:
            self._progress(f'  - {story.id}: {story.title}')

    def _step_loop(self, step: WorkflowStep, run: WorkflowRun) -> bool:
        if run.status == RunStatus.planning:
            run.advance(RunStatus.running)
        loop = RalphLoop(
            self.runner,
            self.ledger,
            run,
            step,
            self.project_dir,
            verify=self.verify,
            committer=self.committer,
        )
        passed = loop.execute()
        self._progress(f'[{step.id}] {run.count_done()}/{len(run.stories)} stories done')
        if not passed:
            failed = [s.id for s in run.stories if s.status == StoryStatus.failed]
            reason = f'failed stories: {", ".join(failed)}' if failed else 'stories left open'
            self._fail(run, f'[error] loop step {step.id}: {reason}')
        return passed

    def _step_learnings(self, step: WorkflowStep, run: WorkflowRun) -> None:
        result = self.runner.run(step.agent, build_learnings_prompt(run), run_id=run.id, step_id=step.id)
        run.learnings.append(result.output)
        run.progress.append(f'[{step.id}] Learnings extracted')
        self.ledger.append(
            Learning(
                run_id=run.id,
                timestamp=self.ledger.now(),
                content=result.output[: constants.LEARNING_EVENT_MAX_CHARS],
            )
        )
        if self.runner.learnings.should_auto_extract and result.output.strip():
            self.runner.learnings.append(result.output)

    def _step_single(self, step: WorkflowStep, run: WorkflowRun) -> None:
        self.runner.run(step.agent, build_single_prompt(run, step), run_id=run.id, step_id=step.id)
        run.progress.append(f'[{step.id}] {step.agent}: completed')

    # -- helpers ---------------------------------------------------------------

    def _fail(self, run: WorkflowRun, note: str) -> None:
        run.progress.append(note)
        if not run.is_finished:
            run.advance(RunStatus.failed)

    @staticmethod
    def _all_stories_done(run: WorkflowRun) -> bool:
        return all(s.status == StoryStatus.done for s in run.stories)

    def _progress(self, message: str) -> None:
        if self.on_progress is None:
            logger.info(message)
            return
        logger.debug(message)
        self.on_progress(message)


def _first_line(exc: BaseException) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__
