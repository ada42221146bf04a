"""Story parser: extracts a story list from planner agent output.

Planner agents are LLMs, so the decoder is deliberately lenient. It handles
markdown code fences, prose around the JSON, trailing commas and several
spellings of the same key. Every leniency rule lives in this module.
"""

from __future__ import annotations

import json
import re
import secrets
from typing import Any

from spool import constants
from spool.models import Story, StoryStatus


_FENCE_RE = re.compile(r'```(?:json)?\s*')
_GREEDY_ARRAY_RE = re.compile(r'\[[\s\S]*\]')
_TRAILING_COMMA_RE = re.compile(r',\s*([\]}])')

ID_KEYS = ('id', 'story_id', 'storyId')
TITLE_KEYS = ('title', 'name')
CRITERIA_KEYS = ('acceptance_criteria', 'acceptanceCriteria', 'criteria')


class StoryParseError(ValueError):
    """Raised when planner output cannot be decoded into stories.

    The full planner output is kept on ``raw`` for debugging.
    """

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub('', text).replace('```', '')


def extract_json_array(text: str) -> str | None:
    """Return the first balanced ``[...]`` in *text*, ignoring brackets inside JSON strings."""
    start = text.find('[')
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == '[':
            depth += 1
        elif ch == ']':
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _loads_lenient(json_str: str, raw: str) -> Any:
    try:
        return json.loads(json_str)
    except json.JSONDecodeError:
        pass
    cleaned = _TRAILING_COMMA_RE.sub(r'\1', json_str)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise StoryParseError(
            f'Failed to parse stories JSON ({exc.msg}). First 300 chars: "{json_str[:300]}"',
            raw,
        ) from exc


# ---------------------------------------------------------------------------
# Field normalisation
# ---------------------------------------------------------------------------


def _first(entry: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = entry.get(key)
        if value not in (None, '', []):
            return value
    return None


def _criteria(entry: dict) -> list[str]:
    value = _first(entry, CRITERIA_KEYS)
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(c) for c in value]
    return [str(value)]


def _generated_id() -> str:
    return f'story-{secrets.token_hex(2)}'


def _unique_id(story_id: str, seen: set[str]) -> str:
    if story_id not in seen:
        return story_id
    n = 2
    while f'{story_id}-{n}' in seen:
        n += 1
    return f'{story_id}-{n}'


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_stories(output: str, max_retries: int = constants.MAX_RETRIES) -> list[Story]:
    """Parse planner output into pending stories.

    Raises :class:`StoryParseError` if no non-empty list of story objects can be found.
    """
    stripped = strip_code_fences(output)

    json_str = extract_json_array(stripped)
    if json_str is None:
        greedy = _GREEDY_ARRAY_RE.search(stripped)
        if greedy is None:
            raise StoryParseError(
                f'Planner did not output a valid JSON story array. Output starts with: "{output[:200]}..."',
                output,
            )
        json_str = greedy.group(0)

    raw = _loads_lenient(json_str, output)
    if not isinstance(raw, list) or not raw:
        raise StoryParseError('Planner output parsed but is not a non-empty array', output)

    stories: list[Story] = []
    seen: set[str] = set()
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise StoryParseError(f'Story #{i + 1} is not an object: {entry!r}', output)

        story_id = _first(entry, ID_KEYS)
        story_id = _unique_id(str(story_id) if story_id is not None else _generated_id(), seen)
        seen.add(story_id)

        title = _first(entry, TITLE_KEYS)
        stories.append(
            Story(
                id=story_id,
                title=str(title) if title is not None else 'Untitled story',
                description=str(entry.get('description') or ''),
                acceptance_criteria=_criteria(entry),
                status=StoryStatus.pending,
                retry_count=0,
                max_retries=max_retries,
            )
        )
    return stories
