"""Configuration loading: ``spool.yaml``, agent definitions and workflow formulas.

Layout::

    <project>/spool.yaml
    <project>/.spool/agents/<name>.yaml
    <project>/.spool/workflows/<name>.yaml
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from spool.models import AgentDefinition, SpoolConfig, WorkflowFormula


logger = logging.getLogger(__name__)

CONFIG_FILE = 'spool.yaml'
AGENTS_DIR = 'agents'
WORKFLOWS_DIR = 'workflows'


class ConfigError(Exception):
    """Raised for missing or invalid configuration (unknown agent/workflow, bad YAML, schema errors)."""


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding='utf-8'))
    except yaml.YAMLError as exc:
        raise ConfigError(f'Invalid YAML in {path}: {exc}') from exc
    except OSError as exc:
        raise ConfigError(f'Cannot read {path}: {exc}') from exc


def _format_validation_error(path: Path, exc: ValidationError) -> str:
    lines = [f'Invalid configuration in {path}:']
    for err in exc.errors():
        loc = '.'.join(str(p) for p in err['loc']) or '<root>'
        lines.append(f'  {loc}: {err["msg"]}')
    return '\n'.join(lines)


def _discover(directory: Path) -> list[str]:
    if not directory.is_dir():
        return []
    return sorted(p.stem for p in directory.glob('*.yaml'))


# ---------------------------------------------------------------------------
# Project config
# ---------------------------------------------------------------------------


def load_config(project_dir: str | Path) -> SpoolConfig:
    """Load ``spool.yaml`` from *project_dir*; defaults when absent or empty.

    Sections missing from the file keep their defaults field by field.
    """
    path = Path(project_dir) / CONFIG_FILE
    if not path.exists():
        return SpoolConfig()

    data = _read_yaml(path)
    if data is None:
        return SpoolConfig()
    if not isinstance(data, dict):
        raise ConfigError(f'{path} must contain a mapping, got {type(data).__name__}')

    try:
        return SpoolConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(path, exc)) from exc


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------


def discover_agents(spool_dir: str | Path) -> list[str]:
    return _discover(Path(spool_dir) / AGENTS_DIR)


def load_agent(spool_dir: str | Path, name: str) -> AgentDefinition:
    path = Path(spool_dir) / AGENTS_DIR / f'{name}.yaml'
    if not path.exists():
        available = discover_agents(spool_dir)
        raise ConfigError(f"Agent '{name}' not found. Available: {', '.join(available) or '(none)'}")

    data = _read_yaml(path) or {}
    if not isinstance(data, dict):
        raise ConfigError(f'{path} must contain a mapping')
    data.setdefault('name', name)
    try:
        return AgentDefinition.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(path, exc)) from exc


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


def discover_workflows(spool_dir: str | Path) -> list[str]:
    return _discover(Path(spool_dir) / WORKFLOWS_DIR)


def load_workflow(spool_dir: str | Path, name: str) -> WorkflowFormula:
    path = Path(spool_dir) / WORKFLOWS_DIR / f'{name}.yaml'
    if not path.exists():
        available = discover_workflows(spool_dir)
        raise ConfigError(f"Workflow '{name}' not found. Available: {', '.join(available) or '(none)'}")

    data = _read_yaml(path)
    if not isinstance(data, dict):
        raise ConfigError(f'{path} must contain a mapping')
    data.setdefault('name', name)
    try:
        return WorkflowFormula.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(path, exc)) from exc


def load_workflows(spool_dir: str | Path) -> dict[str, WorkflowFormula]:
    """Load every workflow under ``<spool_dir>/workflows``. Invalid files raise."""
    formulas = {name: load_workflow(spool_dir, name) for name in discover_workflows(spool_dir)}
    logger.debug('Loaded %d workflow(s) from %s', len(formulas), spool_dir)
    return formulas
