"""Spool: multi-agent workflow orchestration with Ralph-style story loops."""

from spool.adapter import (
    Adapter,
    AdapterError,
    AdapterStatus,
    AgentResult,
    ExecutionContext,
    available_adapters,
    get_adapter,
    register_adapter,
)
from spool.config import ConfigError, load_agent, load_config, load_workflow
from spool.filelock import FileLock, FileLockTimeout
from spool.ledger import Ledger, LedgerError
from spool.loop import RalphLoop, parse_verdict
from spool.models import (
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
from spool.orchestrator import WorkflowOrchestrator
from spool.runner import AgentRunner
from spool.stories import StoryParseError, parse_stories


__all__ = [
    'Adapter',
    'AdapterError',
    'AdapterStatus',
    'AgentDefinition',
    'AgentResult',
    'AgentRunner',
    'ConfigError',
    'ExecutionContext',
    'FileLock',
    'FileLockTimeout',
    'Ledger',
    'LedgerError',
    'RalphLoop',
    'RunStatus',
    'SpoolConfig',
    'StepKind',
    'Story',
    'StoryParseError',
    'StoryStatus',
    'WorkflowFormula',
    'WorkflowOrchestrator',
    'WorkflowRun',
    'WorkflowStep',
    'available_adapters',
    'get_adapter',
    'load_agent',
    'load_config',
    'load_workflow',
    'parse_stories',
    'parse_verdict',
    'register_adapter',
]
