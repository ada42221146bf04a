"""Kiro adapter.

Two modes:

* CLI mode spawns ``kiro-cli chat --no-interactive --agent <name>`` per call.
* ACP mode (``use_acp: true``) keeps one ``kiro-cli acp`` process alive for
  the adapter's lifetime and opens a brand-new session for every call, so no
  conversation memory leaks from one agent call into the next.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time

from spool import constants
from spool.acp import AcpClient
from spool.adapter import (
    AdapterError,
    AdapterStatus,
    AgentResult,
    ExecutionContext,
    Success,
    compose_prompt,
    to_agent_result,
)
from spool.adapters.spawn import spawn_agent
from spool.models import AdapterConfig, AgentDefinition


logger = logging.getLogger(__name__)


class KiroAdapter:
    name = 'kiro'

    def __init__(self, config: AdapterConfig | None = None):
        self.config = config or AdapterConfig()
        self.command = self.config.command or constants.KIRO_CLI_PATH
        self.use_acp = self.config.use_acp
        self._client: AcpClient | None = None
        self._client_lock = threading.Lock()
        self._validated = False

    def validate(self) -> AdapterStatus:
        path = shutil.which(self.command)
        if path is None:
            return AdapterStatus(installed=False, error=f'{self.command} not found')
        self._validated = True
        return AdapterStatus(installed=True, version='unknown')

    def exec(self, agent: AgentDefinition, context: ExecutionContext) -> AgentResult:
        if not self._validated:
            status = self.validate()
            if not status.installed:
                raise AdapterError(f'Kiro CLI not found: {status.error}')
        if self.use_acp:
            return self._exec_acp(agent, context)
        return self._exec_cli(agent, context)

    def cleanup(self) -> None:
        with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            logger.debug('Stopping persistent ACP session process')
            client.stop()

    def _timeout(self, context: ExecutionContext) -> int:
        return context.timeout or self.config.timeout or constants.AGENT_TIMEOUT

    # -- CLI mode --------------------------------------------------------------

    def build_command(self, agent_name: str) -> list[str]:
        return [self.command, 'chat', '--no-interactive', '--agent', agent_name, *self.config.args]

    def _exec_cli(self, agent: AgentDefinition, context: ExecutionContext) -> AgentResult:
        return spawn_agent(
            self.build_command(agent.name),
            compose_prompt(agent, context),
            agent_name=agent.name,
            cwd=context.project_dir,
            timeout=self._timeout(context),
            env=self.config.env,
        )

    # -- ACP mode --------------------------------------------------------------

    def _acp_client(self) -> AcpClient:
        with self._client_lock:
            if self._client is None or not self._client.is_running:
                if self._client is not None:
                    logger.warning('ACP session process exited, restarting it')
                    self._client.stop()
                client = AcpClient(self.command, env=self.config.env)
                client.start()
                self._client = client
            return self._client

    def _exec_acp(self, agent: AgentDefinition, context: ExecutionContext) -> AgentResult:
        client = self._acp_client()
        start = time.monotonic()

        session_id = client.new_session(context.project_dir)
        client.set_agent(session_id, agent.name)
        output = client.prompt(session_id, compose_prompt(agent, context), timeout=self._timeout(context))

        duration_ms = int((time.monotonic() - start) * 1000)
        return to_agent_result(Success(output), agent.name, 0, duration_ms)
