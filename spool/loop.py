"""The Ralph loop: implement -> verify -> retry, one story at a time.

Every attempt is a fresh agent call. The only memory carried from a failed
attempt into the next one is the verifier's feedback, folded into the next
implementation prompt. Retries do not consume the run's iteration budget;
only attempts at net-new stories do.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from spool.adapter import AdapterError
from spool.git import commit_all
from spool.ledger import Ledger, LoopExhausted, LoopFail, LoopPass, LoopStart
from spool.models import Story, StoryStatus, WorkflowRun, WorkflowStep
from spool.prompts import build_implement_prompt, build_verify_prompt
from spool.runner import AgentRunner


logger = logging.getLogger(__name__)

VERDICT_LINES = 5
STORY_OUTPUT_MAX_CHARS = 2000

_PASS_RE = re.compile(r'^PASS', re.IGNORECASE | re.MULTILINE)

Committer = Callable[[str, Path], bool]


def parse_verdict(output: str) -> bool:
    """True if one of the first few lines of verifier output starts with ``PASS``."""
    head = '\n'.join(output.split('\n')[:VERDICT_LINES])
    return _PASS_RE.search(head) is not None


class RalphLoop:
    def __init__(
        self,
        runner: AgentRunner,
        ledger: Ledger,
        run: WorkflowRun,
        step: WorkflowStep,
        project_dir: str | Path,
        verify: bool = True,
        committer: Committer | None = None,
    ):
        self.runner = runner
        self.ledger = ledger
        self.run = run
        self.step = step
        self.project_dir = Path(project_dir)
        self.verifier = step.verifier if verify else None
        self.committer = committer or commit_all

    def execute(self) -> bool:
        """Drive stories until none are open or the iteration budget runs out.

        Returns True only if every story ended ``done``.
        """
        self._apply_step_retries()
        logger.info(
            'Ralph loop starting: %d/%d stories done, budget %d/%d iterations',
            self.run.count_done(),
            len(self.run.stories),
            self.run.iteration,
            self.run.max_iterations,
        )

        while self.run.iteration < self.run.max_iterations:
            story = self._next_story()
            if story is None:
                break
            self._run_story(story)
            self.run.touch()

        if self.run.has_open_stories():
            logger.warning(
                'Iteration budget exhausted (%d/%d) with %d story(ies) open',
                self.run.iteration,
                self.run.max_iterations,
                sum(1 for s in self.run.stories if s.is_open),
            )
            self.run.progress.append(
                f'[{self.step.id}] iteration budget exhausted ({self.run.iteration}/{self.run.max_iterations})'
            )

        return all(s.status == StoryStatus.done for s in self.run.stories)

    # -- internals -------------------------------------------------------------

    def _apply_step_retries(self) -> None:
        if self.step.max_retries is None:
            return
        for story in self.run.stories:
            if story.is_open:
                story.max_retries = max(self.step.max_retries, story.retry_count)

    def _next_story(self) -> Story | None:
        for story in self.run.stories:
            if story.is_open:
                return story
        return None

    def _run_story(self, story: Story) -> None:
        story.status = StoryStatus.running
        self.run.iteration += 1
        attempt = story.retry_count + 1
        self.ledger.append(
            LoopStart(
                run_id=self.run.id,
                timestamp=self.ledger.now(),
                step=self.step.id,
                story_id=story.id,
                attempt=attempt,
            )
        )
        logger.info('[%s] %s attempt %d: %s', self.step.id, story.id, attempt, story.title)

        passed, feedback = self._attempt(story)

        if passed:
            story.status = StoryStatus.done
            story.verify_feedback = None
            self.run.progress.append(
                f'## [{story.id}] {story.title} - DONE (iteration {self.run.iteration}) '
                f'{datetime.now(UTC).isoformat()}'
            )
            self.committer(f'feat({story.id}): {story.title}', self.project_dir)
            self.ledger.append(
                LoopPass(
                    run_id=self.run.id,
                    timestamp=self.ledger.now(),
                    step=self.step.id,
                    story_id=story.id,
                    attempt=attempt,
                )
            )
            logger.info('[%s] %s done', self.step.id, story.id)
            return

        story.verify_feedback = feedback
        self.ledger.append(
            LoopFail(
                run_id=self.run.id,
                timestamp=self.ledger.now(),
                step=self.step.id,
                story_id=story.id,
                attempt=attempt,
                feedback=feedback,
            )
        )
        if story.retry_count >= story.max_retries:
            story.status = StoryStatus.failed
            self.ledger.append(
                LoopExhausted(
                    run_id=self.run.id,
                    timestamp=self.ledger.now(),
                    step=self.step.id,
                    story_id=story.id,
                    attempts=attempt,
                )
            )
            logger.warning('[%s] %s failed after %d attempts', self.step.id, story.id, attempt)
        else:
            story.retry_count += 1
            story.status = StoryStatus.pending
            # a retry is re-counted when the story is picked up again
            self.run.iteration -= 1
            logger.info(
                '[%s] %s retry %d/%d',
                self.step.id,
                story.id,
                story.retry_count,
                story.max_retries,
            )

    def _attempt(self, story: Story) -> tuple[bool, str]:
        """One implement (+ verify) round. Returns ``(passed, feedback)``."""
        try:
            result = self.runner.run(
                self.step.agent,
                build_implement_prompt(self.run, story),
                run_id=self.run.id,
                step_id=self.step.id,
            )
            story.output = result.output[:STORY_OUTPUT_MAX_CHARS]

            if not self.verifier:
                return True, ''

            verdict = self.runner.run(
                self.verifier,
                build_verify_prompt(story),
                run_id=self.run.id,
                step_id=self.step.id,
            )
        except AdapterError as exc:
            logger.warning('[%s] %s attempt failed: %s', self.step.id, story.id, exc)
            return False, f'Agent error: {exc}'

        if parse_verdict(verdict.output):
            return True, ''
        return False, verdict.output
