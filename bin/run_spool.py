#!/usr/bin/env python3
"""Spool command-line entry point.

Commands:
  run <workflow> <task>           Execute a workflow (``--dry-run`` to only describe it).
  loop <agent> <verifier> --task  Run a bare Ralph loop over one ad-hoc story.
  exec <agent> [prompt]           Run one agent once (prompt from stdin if omitted).
  status [--run ID] [--all]       Show runs recorded in the ledger.
  stop <run-id>                   Ask a running workflow to stop after its current step.
  list                            List workflows, agents, steering files and adapters.
  adapters                        Show whether each adapter's CLI is installed, and its version.
  learn [--since REF] [--run ID]  Extract learnings from recent commits (and a run's events).
"""

import argparse
import logging
import sys
from pathlib import Path

from spool import constants
from spool.adapter import Adapter, AdapterError, available_adapters, get_adapter
from spool.config import ConfigError, discover_agents, discover_workflows, load_config
from spool.git import log_oneline
from spool.ledger import Ledger, LedgerError, LoopFail, RunComplete, RunStart, StepComplete, StepStart
from spool.loop import RalphLoop
from spool.models import RunStatus, SpoolConfig, Story, WorkflowRun, WorkflowStep
from spool.orchestrator import WorkflowOrchestrator
from spool.prompts import build_manual_learnings_prompt
from spool.runner import AgentRunner
from spool.state import request_stop
from spool.steering import LearningsStore, SteeringResolver
from spool.stories import StoryParseError


logger = logging.getLogger(__name__)

RECENT_RUNS = 5


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _print_progress(message: str) -> None:
    """Print progress to stdout and log it."""
    print(message, flush=True)
    logger.debug(message)


def _resolve_adapter(config: SpoolConfig, name: str | None = None, use_acp: bool = False) -> Adapter:
    adapter_name = name or config.adapter
    adapter_config = config.adapter_config(adapter_name)
    if use_acp:
        adapter_config = adapter_config.model_copy(update={'use_acp': True})
    return get_adapter(adapter_name, adapter_config)


def _spool_dir(project_dir: Path) -> Path:
    return project_dir / constants.SPOOL_DIR


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_run(args: argparse.Namespace, project_dir: Path) -> int:
    config = load_config(project_dir)
    adapter = _resolve_adapter(config, args.adapter, args.acp)
    orchestrator = WorkflowOrchestrator(
        adapter,
        config,
        project_dir,
        max_iterations=args.max_iter,
        verify=False if args.no_verify else None,
        on_progress=_print_progress,
    )

    if args.dry_run:
        print(orchestrator.dry_run(args.workflow))
        return 0

    run = orchestrator.run(args.workflow, args.task)
    print()
    print(f'Run: {run.id}')
    print(f'Status: {run.status}')
    print(f'Stories: {run.count_done()}/{len(run.stories)}')
    print(f'Branch: {run.branch or "(current)"}')
    return 0 if run.status == RunStatus.done else 1


def cmd_loop(args: argparse.Namespace, project_dir: Path) -> int:
    config = load_config(project_dir)
    adapter = _resolve_adapter(config, args.adapter, args.acp)
    runner = AgentRunner(adapter, config, project_dir)
    ledger = Ledger(_spool_dir(project_dir) / constants.LEDGER_FILE)

    step = WorkflowStep(id='loop', agent=args.agent, verifier=args.verifier, max_retries=args.max_retries)
    run = WorkflowRun(
        workflow='loop',
        task=args.task,
        status=RunStatus.running,
        max_iterations=args.max_retries + 1,
        stories=[
            Story(
                id='task-1',
                title=args.task,
                description=args.task,
                acceptance_criteria=[f'Task completed: {args.task}'],
                max_retries=args.max_retries,
            )
        ],
    )

    _print_progress(f'Ralph loop: {args.agent} + {args.verifier} (max retries: {args.max_retries})')
    ledger.append(
        RunStart(run_id=run.id, timestamp=ledger.now(), workflow='loop', adapter=adapter.name, task=args.task)
    )
    try:
        passed = RalphLoop(runner, ledger, run, step, project_dir).execute()
    finally:
        runner.cleanup()
    ledger.append(
        RunComplete(run_id=run.id, timestamp=ledger.now(), workflow='loop', status='pass' if passed else 'fail')
    )

    story = run.stories[0]
    attempts = story.retry_count + 1
    if passed:
        _print_progress(f'Task completed on attempt {attempts}')
        return 0
    _print_progress(f'Task failed after {attempts} attempts')
    return 1


def cmd_exec(args: argparse.Namespace, project_dir: Path) -> int:
    prompt = args.prompt
    if prompt is None:
        prompt = sys.stdin.read().strip()
    if not prompt:
        print('No prompt provided. Pass it as an argument or pipe it via stdin.', file=sys.stderr)
        return 2

    config = load_config(project_dir)
    adapter = _resolve_adapter(config, args.adapter, args.acp)
    runner = AgentRunner(adapter, config, project_dir)
    try:
        result = runner.run(args.agent, prompt)
    finally:
        runner.cleanup()
    print(result.output)
    return 0


def cmd_status(args: argparse.Namespace, project_dir: Path) -> int:
    ledger_path = _spool_dir(project_dir) / constants.LEDGER_FILE
    if not ledger_path.exists():
        print("No workflow runs found. Run 'run' to start a workflow.")
        return 0
    ledger = Ledger(ledger_path)

    if args.run:
        return _show_run_detail(ledger, args.run)

    runs = ledger.get_runs()
    if not runs:
        print('No workflow runs found.')
        return 0
    display = runs if args.all else runs[-RECENT_RUNS:]
    print('Recent runs:\n')
    for summary in display:
        print(f'  {summary.run_id}  {summary.workflow:<16}  {summary.status:<8}  {summary.timestamp}')
    return 0


def _show_run_detail(ledger: Ledger, run_id: str) -> int:
    events = ledger.get_run_events(run_id)
    if not events:
        print(f'No events found for run: {run_id}')
        return 1

    for event in events:
        if isinstance(event, RunStart):
            print(f'Run: {event.run_id}  |  Workflow: {event.workflow}  |  Adapter: {event.adapter}')
            print(f'Started: {event.timestamp}\n')
        elif isinstance(event, StepStart):
            print(f'  > {event.step:<15} {event.agent}')
        elif isinstance(event, StepComplete):
            print(f'    {event.step:<15} {event.status} ({event.duration_ms / 1000:.1f}s)')
        elif isinstance(event, LoopFail):
            first = event.feedback.strip().splitlines()[0] if event.feedback.strip() else ''
            print(f'      {event.story_id} attempt {event.attempt} failed: {first[:100]}')
        elif isinstance(event, RunComplete):
            print(f'\nResult: {event.status}  ({event.timestamp})')
        else:
            detail = getattr(event, 'story_id', '')
            print(f'      {event.type} {detail}'.rstrip())
    return 0


def cmd_stop(args: argparse.Namespace, project_dir: Path) -> int:
    runs_dir = _spool_dir(project_dir) / constants.RUNS_DIR
    if not request_stop(runs_dir, args.run_id):
        print(f'No snapshot found for run: {args.run_id}', file=sys.stderr)
        return 1
    _print_progress(f'Stop requested for run {args.run_id}; it will stop after the current step.')
    return 0


def cmd_list(args: argparse.Namespace, project_dir: Path) -> int:
    spool_dir = _spool_dir(project_dir)
    config = load_config(project_dir)
    steering = SteeringResolver(spool_dir, LearningsStore(spool_dir, config.learnings))

    sections = [
        ('Workflows', discover_workflows(spool_dir)),
        ('Agents', discover_agents(spool_dir)),
        ('Steering', steering.list()),
        ('Adapters', available_adapters()),
    ]
    for title, names in sections:
        print(f'{title}:')
        for name in names:
            marker = ' (default)' if title == 'Adapters' and name == config.adapter else ''
            print(f'  {name}{marker}')
        if not names:
            print('  (none)')
    return 0


def cmd_adapters(args: argparse.Namespace, project_dir: Path) -> int:
    config = load_config(project_dir)
    print('Available adapters:\n')
    for name in available_adapters():
        adapter = get_adapter(name, config.adapter_config(name))
        try:
            status = adapter.validate()
        finally:
            adapter.cleanup()
        state = 'installed' if status.installed else 'not found'
        version = f' {status.version}' if status.version else ''
        default = ' (default)' if name == config.adapter else ''
        print(f'  {name:<15} {state}{version}{default}')
        if status.error and not status.installed:
            print(f'  {"":<15} {status.error}')
    return 0


def cmd_learn(args: argparse.Namespace, project_dir: Path) -> int:
    spool_dir = _spool_dir(project_dir)
    if not (spool_dir / 'agents').is_dir():
        print(f'No {constants.SPOOL_DIR}/agents/ found in {project_dir}', file=sys.stderr)
        return 1

    run_events: list[str] = []
    if args.run:
        ledger_path = spool_dir / constants.LEDGER_FILE
        if ledger_path.exists():
            events = Ledger(ledger_path).get_run_events(args.run)
            run_events = [event.model_dump_json(by_alias=True) for event in events]
        if not run_events:
            print(f'No events found for run: {args.run}', file=sys.stderr)
            return 1

    config = load_config(project_dir)
    adapter = _resolve_adapter(config, args.adapter, args.acp)
    runner = AgentRunner(adapter, config, project_dir)
    prompt = build_manual_learnings_prompt(args.since, log_oneline(args.since, project_dir), run_events)

    _print_progress(f'Running {args.agent} agent to extract learnings...')
    try:
        result = runner.run(args.agent, prompt, run_id=args.run or 'manual', step_id='learn')
    finally:
        runner.cleanup()

    if not result.output.strip():
        _print_progress('Agent produced no learnings')
        return 1
    runner.learnings.append(result.output)
    print(result.output)
    _print_progress(f'Learnings recorded in {constants.SPOOL_DIR}/{constants.LEARNINGS_FILE}')
    return 0


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Spool: multi-agent development workflows with Ralph story loops.',
    )
    parser.add_argument(
        '--project-dir',
        type=Path,
        default=Path.cwd(),
        help='Project root containing spool.yaml and .spool/ (default: current directory)',
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging',
    )
    sub = parser.add_subparsers(dest='command', required=True)

    adapter_opts = argparse.ArgumentParser(add_help=False)
    adapter_opts.add_argument(
        '--adapter',
        default=None,
        help=f'Execution adapter (default: from spool.yaml, else {constants.ADAPTER})',
    )
    adapter_opts.add_argument(
        '--acp',
        action='store_true',
        help='Use a persistent ACP session (kiro adapter)',
    )

    p_run = sub.add_parser('run', parents=[adapter_opts], help='Execute a workflow')
    p_run.add_argument('workflow', help='Workflow name (.spool/workflows/<name>.yaml)')
    p_run.add_argument('task', nargs='?', default='', help='Task description')
    p_run.add_argument(
        '--max-iter',
        type=int,
        default=None,
        help='Max story iterations (default: from spool.yaml)',
    )
    p_run.add_argument(
        '--no-verify',
        action='store_true',
        help='Skip verification after each story',
    )
    p_run.add_argument(
        '--dry-run',
        action='store_true',
        help='Describe the workflow without running any agent',
    )

    p_loop = sub.add_parser('loop', parents=[adapter_opts], help='Run a bare Ralph loop for one task')
    p_loop.add_argument('agent', help='Implementer agent')
    p_loop.add_argument('verifier', help='Verifier agent')
    p_loop.add_argument('--task', required=True, help='Task description')
    p_loop.add_argument(
        '--max-retries',
        type=int,
        default=constants.MAX_RETRIES,
        help=f'Retries after the first attempt (default: {constants.MAX_RETRIES})',
    )

    p_exec = sub.add_parser('exec', parents=[adapter_opts], help='Run a single agent once')
    p_exec.add_argument('agent', help='Agent name')
    p_exec.add_argument('prompt', nargs='?', default=None, help='Prompt (read from stdin if omitted)')

    p_status = sub.add_parser('status', help='Show runs recorded in the ledger')
    p_status.add_argument('--run', default=None, help='Show the event history of one run')
    p_status.add_argument('--all', action='store_true', help='Show all runs, not just recent ones')

    p_stop = sub.add_parser('stop', help='Stop a running workflow after its current step')
    p_stop.add_argument('run_id', help='Run id')

    sub.add_parser('list', help='List workflows, agents, steering files and adapters')

    sub.add_parser('adapters', help='Show adapter installation status')

    p_learn = sub.add_parser('learn', parents=[adapter_opts], help='Extract learnings from recent work')
    p_learn.add_argument('--since', default='HEAD~3', help='Git revision to read the log from (default: HEAD~3)')
    p_learn.add_argument('--run', default=None, help='Include the ledger events of this run')
    p_learn.add_argument('--agent', default='compound', help='Agent that extracts learnings (default: compound)')
    return parser


COMMANDS = {
    'run': cmd_run,
    'loop': cmd_loop,
    'exec': cmd_exec,
    'status': cmd_status,
    'stop': cmd_stop,
    'list': cmd_list,
    'adapters': cmd_adapters,
    'learn': cmd_learn,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        stream=sys.stderr,
    )

    if args.command == 'run' and not args.dry_run and not args.task:
        parser.error('run requires a task description (or --dry-run)')

    project_dir = args.project_dir.resolve()
    try:
        return COMMANDS[args.command](args, project_dir)
    except (AdapterError, StoryParseError, LedgerError) as exc:
        logger.error('%s', exc)
        return 1
    except (ConfigError, ValueError) as exc:
        logger.error('%s', exc)
        return 2


if __name__ == '__main__':
    sys.exit(main())
