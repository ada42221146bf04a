"""Spawn-per-call process execution shared by the CLI adapters."""

from __future__ import annotations

import logging
import os
import subprocess
import time

from spool.adapter import AdapterError, AgentResult, classify_completion, to_agent_result


logger = logging.getLogger(__name__)


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ''
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return value


def probe_version(command: str, *, timeout: int = 5) -> tuple[bool, str]:
    """Run ``<command> --version``. Returns ``(ok, version_or_error)``."""
    try:
        result = subprocess.run(
            [command, '--version'],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        return False, f'{command} not found'
    except subprocess.TimeoutExpired:
        return False, f'{command} --version timed out'
    if result.returncode != 0:
        return False, (result.stderr or 'Non-zero exit').strip()
    return True, result.stdout.strip()


def spawn_agent(
    cmd: list[str],
    prompt: str,
    *,
    agent_name: str,
    cwd: str,
    timeout: int,
    env: dict[str, str] | None = None,
) -> AgentResult:
    """Launch a fresh agent process, feed *prompt* on stdin and capture stdout.

    On timeout the process is killed; whatever it printed first is still
    classified, so substantial partial output becomes a degraded success.
    """
    full_env = {**os.environ, **(env or {})}
    logger.debug('Spawning %s (timeout=%ds)', cmd[0], timeout)

    start = time.monotonic()
    timed_out = False
    try:
        proc = subprocess.run(
            cmd,
            input=prompt,
            capture_output=True,
            text=True,
            cwd=cwd,
            env=full_env,
            timeout=timeout,
        )
        output, stderr, exit_code = proc.stdout, proc.stderr, proc.returncode
    except FileNotFoundError as exc:
        raise AdapterError(f"Agent '{agent_name}' failed: executable not found: {cmd[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        timed_out = True
        output, stderr, exit_code = _as_text(exc.stdout), _as_text(exc.stderr), 124
    duration_ms = int((time.monotonic() - start) * 1000)

    completion = classify_completion(output, exit_code, timed_out=timed_out, error=stderr)
    return to_agent_result(completion, agent_name, exit_code, duration_ms)
