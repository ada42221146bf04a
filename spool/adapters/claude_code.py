"""Claude Code adapter.

Executes agents through the ``claude`` CLI in print mode (``claude -p``), one
fresh process per call. Steering files are prepended to the prompt, which is
fed on stdin.
"""

from __future__ import annotations

from spool import constants
from spool.adapter import AdapterError, AdapterStatus, AgentResult, ExecutionContext, compose_prompt
from spool.adapters.spawn import probe_version, spawn_agent
from spool.models import AdapterConfig, AgentDefinition


class ClaudeCodeAdapter:
    """Spawn-per-call adapter for the Claude Code CLI."""

    name = 'claude-code'

    def __init__(self, config: AdapterConfig | None = None):
        self.config = config or AdapterConfig()
        self.command = self.config.command or constants.CLAUDE_CLI_PATH
        self._validated = False

    def validate(self) -> AdapterStatus:
        ok, detail = probe_version(self.command)
        if not ok:
            return AdapterStatus(installed=False, error=detail)
        self._validated = True
        return AdapterStatus(installed=True, version=detail)

    def build_command(self) -> list[str]:
        return [self.command, '-p', *self.config.args]

    def exec(self, agent: AgentDefinition, context: ExecutionContext) -> AgentResult:
        if not self._validated:
            status = self.validate()
            if not status.installed:
                raise AdapterError(f'Claude Code CLI not found: {status.error}')

        return spawn_agent(
            self.build_command(),
            compose_prompt(agent, context),
            agent_name=agent.name,
            cwd=context.project_dir,
            timeout=context.timeout or self.config.timeout or constants.AGENT_TIMEOUT,
            env=self.config.env,
        )

    def cleanup(self) -> None:
        """Nothing to release: every call owns its own process."""
