"""Shared constants for spool.

All values are configurable via environment variables for project-specific customization.
"""

from __future__ import annotations

import os


SPOOL_DIR = os.environ.get('SPOOL_DIR', '.spool')
ADAPTER = os.environ.get('SPOOL_ADAPTER', 'claude-code')
AGENT_TIMEOUT = int(os.environ.get('SPOOL_AGENT_TIMEOUT', '300'))
MAX_ITERATIONS = int(os.environ.get('SPOOL_MAX_ITERATIONS', '15'))
MAX_RETRIES = int(os.environ.get('SPOOL_MAX_RETRIES', '3'))
CLAUDE_CLI_PATH = os.environ.get('CLAUDE_CLI_PATH', 'claude')
KIRO_CLI_PATH = os.environ.get('KIRO_CLI_PATH', 'kiro-cli')

# Output longer than this still counts when an agent times out or exits non-zero
PARTIAL_OUTPUT_MIN_CHARS = 50

LEDGER_FILE = 'ledger.jsonl'
RUNS_DIR = 'runs'
LEARNINGS_FILE = 'steering/learnings.md'

# Ledger copy of learnings output is capped
LEARNING_EVENT_MAX_CHARS = 2000
