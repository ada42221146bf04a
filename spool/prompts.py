"""Prompt templates for the plan, implement, verify, learnings and single-shot steps."""

from __future__ import annotations

from spool.models import Story, StoryStatus, WorkflowRun, WorkflowStep


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

PLAN_INSTRUCTIONS = """\
Output ONLY a JSON array of stories in this exact format:
```json
[
  {
    "id": "short-kebab-id",
    "title": "Brief title",
    "description": "What to implement",
    "acceptance_criteria": ["Criterion 1", "Criterion 2"]
  }
]
```

Rules:
- Each story should be completable in one agent session
- Stories should be ordered by dependency (independent first)
- 3-10 stories is ideal
- Be specific in acceptance criteria"""


def build_plan_prompt(run: WorkflowRun) -> str:
    return (
        'You are planning a development task. Break it into small, independent stories.\n\n'
        f'TASK: {run.task}\n\n'
        f'{PLAN_INSTRUCTIONS}'
    )


# ---------------------------------------------------------------------------
# Story loop
# ---------------------------------------------------------------------------


def _criteria_lines(story: Story) -> str:
    return '\n'.join(f'- {c}' for c in story.acceptance_criteria) or '- (none specified)'


def build_implement_prompt(run: WorkflowRun, story: Story) -> str:
    """Prompt for one implementation attempt.

    Carries the story, a summary of finished stories, the remaining count,
    the last verifier feedback (on a retry) and the run's progress log.
    """
    completed = '\n'.join(f'- [x] {s.title}' for s in run.stories if s.status == StoryStatus.done)
    progress_log = '\n'.join(run.progress)

    parts = [
        f'You are implementing a single story in iteration {run.iteration}. Focus ONLY on this story.',
        f'\n## Current Story: {story.title}',
        f'ID: {story.id}',
        f'Description: {story.description}',
        '\n### Acceptance Criteria:',
        _criteria_lines(story),
        f'\n### Progress: {run.count_done()}/{len(run.stories)} stories complete, '
        f'{run.count_remaining()} remaining',
        '\n### Completed Stories:',
        completed or '(none yet)',
    ]
    if story.verify_feedback:
        parts.append('\n### VERIFY FEEDBACK (fix these issues):')
        parts.append(story.verify_feedback)
    parts.append('\n### Progress Log:')
    parts.append(progress_log or '(no previous progress)')
    parts.append(
        '\n## Instructions:\n'
        '1. Read the codebase to understand current state\n'
        '2. Implement ONLY this story\n'
        '3. Run quality checks (build, lint, test)\n'
        '4. If checks fail, fix them\n\n'
        'Do NOT work on other stories. Do NOT refactor unrelated code.'
    )
    return '\n'.join(parts)


VERIFY_OUTPUT_FORMAT = """\
## Output Format:
Start your response with exactly one of:
- PASS: All criteria met
- FAIL: [list what failed]

Then provide details for each criterion:
- PASS: [criterion] - [evidence]
- FAIL: [criterion] - [what's wrong]"""


def build_verify_prompt(story: Story) -> str:
    return '\n'.join(
        [
            'Verify that the following story has been correctly implemented.',
            f'\n## Story: {story.title}',
            f'ID: {story.id}',
            '\n### Acceptance Criteria:',
            _criteria_lines(story),
            '\n## Instructions:\n'
            '1. Check each acceptance criterion\n'
            '2. Run the test suite\n'
            '3. Check the build succeeds\n',
            VERIFY_OUTPUT_FORMAT,
        ]
    )


# ---------------------------------------------------------------------------
# Learnings and single-shot steps
# ---------------------------------------------------------------------------


def build_learnings_prompt(run: WorkflowRun) -> str:
    progress_log = '\n'.join(run.progress) or '(empty)'
    return f"""\
Review the completed workflow and extract learnings.

TASK: {run.task}
WORKFLOW: {run.workflow}
STORIES COMPLETED: {run.count_done()}/{len(run.stories)}
ITERATIONS USED: {run.iteration}/{run.max_iterations}

PROGRESS LOG:
{progress_log}

Instructions:
1. Review git log for recent commits on this branch
2. Identify what worked well, what didn't, and surprises
3. Write each learning as: Context -> Insight -> Action

Output the learnings as markdown. They are recorded for future runs automatically.
Keep learnings concise and actionable."""


def build_single_prompt(run: WorkflowRun, step: WorkflowStep) -> str:
    stories = '\n'.join(f'- [{"x" if s.status == StoryStatus.done else " "}] {s.title}' for s in run.stories)
    progress_log = '\n'.join(run.progress)
    role = step.description or step.id
    return f"""\
You are running the {role} step of a {run.workflow} workflow.

TASK: {run.task}
BRANCH: {run.branch}

STORIES:
{stories or '(no stories)'}

PROGRESS:
{progress_log or '(no previous progress)'}

Do your job as the {step.agent} agent. Review all changes and provide your output."""


def build_manual_learnings_prompt(since: str, git_log: str | None, run_events: list[str] | None = None) -> str:
    sections = [
        'Extract learnings from recent development work.',
        f'## Git Log (since {since})\n{git_log or "(could not read git log)"}',
    ]
    if run_events:
        sections.append('## Run Events\n' + '\n'.join(run_events))
    sections.append(
        'Instructions:\n'
        '1. Review the git log and any run events\n'
        "2. Identify what worked well, what didn't, and surprises\n"
        '3. Write each learning as: Context -> Insight -> Action\n\n'
        'Output the learnings as markdown. They are recorded for future runs automatically.\n'
        'Keep learnings concise and actionable.'
    )
    return '\n\n'.join(sections)
