"""Tests for spool.steering."""

from __future__ import annotations

import re
from pathlib import Path

from spool.models import AgentDefinition, LearningsConfig
from spool.steering import LearningsStore, SteeringResolver


def _steering(spool_dir: Path, name: str, text: str) -> None:
    path = spool_dir / 'steering' / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


class TestLearningsStore:
    def test_append_creates_dated_blocks(self, tmp_path: Path):
        store = LearningsStore(tmp_path)
        (tmp_path / 'steering').mkdir()
        store.append('Use pytest fixtures.\n\n')
        store.append('Run ruff before committing.')

        content = store.read()
        headings = re.findall(r'^## \d{4}-\d{2}-\d{2}$', content, re.M)
        assert len(headings) == 2
        assert content.index('Use pytest fixtures.') < content.index('Run ruff before committing.')

    def test_append_creates_missing_directory(self, tmp_path: Path):
        store = LearningsStore(tmp_path)
        store.append('first')
        assert store.path.exists()

    def test_read_missing_is_empty(self, tmp_path: Path):
        assert LearningsStore(tmp_path).read() == ''

    def test_injectable_respects_config(self, tmp_path: Path):
        _steering(tmp_path, 'learnings.md', '## 2026-01-01\n\nnote\n')
        assert 'note' in LearningsStore(tmp_path).injectable()
        assert LearningsStore(tmp_path, LearningsConfig(inject=False)).injectable() is None

    def test_blank_learnings_not_injected(self, tmp_path: Path):
        _steering(tmp_path, 'learnings.md', '\n\n')
        assert LearningsStore(tmp_path).injectable() is None

    def test_flags(self, tmp_path: Path):
        store = LearningsStore(tmp_path, LearningsConfig(auto=False, inject=True))
        assert store.should_inject
        assert not store.should_auto_extract


class TestSteeringResolver:
    def test_resolves_context_files_in_order(self, tmp_path: Path):
        _steering(tmp_path, 'product.md', 'Product')
        _steering(tmp_path, 'tech.md', 'Tech')
        agent = AgentDefinition(name='dev', context=['steering/tech.md', 'steering/product.md'])
        resolver = SteeringResolver(tmp_path, LearningsStore(tmp_path))

        resolved = resolver.resolve(agent)
        assert list(resolved) == ['steering/tech.md', 'steering/product.md']
        assert resolved['steering/product.md'] == 'Product'

    def test_missing_context_file_skipped(self, tmp_path: Path):
        agent = AgentDefinition(name='dev', context=['steering/missing.md'])
        assert SteeringResolver(tmp_path, LearningsStore(tmp_path)).resolve(agent) == {}

    def test_learnings_injected_last(self, tmp_path: Path):
        _steering(tmp_path, 'product.md', 'Product')
        _steering(tmp_path, 'learnings.md', 'Lesson')
        agent = AgentDefinition(name='dev', context=['steering/product.md'])
        resolved = SteeringResolver(tmp_path, LearningsStore(tmp_path)).resolve(agent)
        assert list(resolved) == ['steering/product.md', 'steering/learnings.md']

    def test_learnings_not_injected_when_disabled(self, tmp_path: Path):
        _steering(tmp_path, 'learnings.md', 'Lesson')
        store = LearningsStore(tmp_path, LearningsConfig(inject=False))
        assert SteeringResolver(tmp_path, store).resolve(AgentDefinition(name='dev')) == {}

    def test_list(self, tmp_path: Path):
        _steering(tmp_path, 'tech.md', 't')
        _steering(tmp_path, 'product.md', 'p')
        _steering(tmp_path, 'notes.txt', 'n')
        resolver = SteeringResolver(tmp_path, LearningsStore(tmp_path))
        assert resolver.list() == ['product.md', 'tech.md']

    def test_list_without_directory(self, tmp_path: Path):
        assert SteeringResolver(tmp_path, LearningsStore(tmp_path)).list() == []
