"""Agent runner: resolves an agent definition and its steering, then calls the adapter."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from spool import constants
from spool.adapter import Adapter, AgentResult, ExecutionContext
from spool.config import load_agent
from spool.models import AgentDefinition, SpoolConfig
from spool.steering import LearningsStore, SteeringResolver


logger = logging.getLogger(__name__)


class AgentRunner:
    """Runs named agents through one adapter.

    Every call goes to the adapter as a fresh invocation; nothing about a
    previous call is carried over except what the caller puts in the prompt
    or ``feedback``.
    """

    def __init__(
        self,
        adapter: Adapter,
        config: SpoolConfig,
        project_dir: str | Path,
        agents: Mapping[str, AgentDefinition] | None = None,
    ):
        self.adapter = adapter
        self.config = config
        self.project_dir = Path(project_dir)
        self.spool_dir = self.project_dir / constants.SPOOL_DIR
        self._agents: dict[str, AgentDefinition] = dict(agents or {})
        self.learnings = LearningsStore(self.spool_dir, config.learnings)
        self.steering = SteeringResolver(self.spool_dir, self.learnings)

    def get_agent(self, name: str) -> AgentDefinition:
        """Return the definition for *name*, loading it from disk on first use."""
        agent = self._agents.get(name)
        if agent is None:
            agent = load_agent(self.spool_dir, name)
            self._agents[name] = agent
        return agent

    def run(
        self,
        agent_name: str,
        prompt: str,
        run_id: str = 'manual',
        step_id: str = '',
        feedback: str | None = None,
        vars: dict[str, str] | None = None,
    ) -> AgentResult:
        agent = self.get_agent(agent_name)
        context = ExecutionContext(
            prompt=prompt,
            project_dir=str(self.project_dir),
            spool_dir=str(self.spool_dir),
            run_id=run_id,
            step_id=step_id or agent_name,
            feedback=feedback,
            steering=self.steering.resolve(agent),
            vars=vars or {},
            timeout=self.config.adapter_config(self.adapter.name).timeout,
        )

        logger.info('Running agent %s (run=%s step=%s)', agent_name, run_id, context.step_id)
        result = self.adapter.exec(agent, context)
        logger.info(
            'Agent %s finished in %.1fs (%s, %d chars)',
            agent_name,
            result.duration_ms / 1000,
            result.outcome,
            len(result.output),
        )
        return result

    def cleanup(self) -> None:
        self.adapter.cleanup()
