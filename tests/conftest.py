"""
Shared pytest fixtures for kmemory tests.

Provides fixtures for:
- Temporary memory files
- Managers over an empty or seeded graph
- A clean environment (no MEMORY_FILE_PATH / KMEMORY_* leaking in)
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List

import pytest

from kmemory.core.config import MemoryConfig
from kmemory.core.manager import KnowledgeGraphManager
from kmemory.core.observability import ObservabilityLogger


SAMPLE_ENTITIES: List[Dict[str, Any]] = [
    {
        "name": "Alice",
        "entityType": "person",
        "observations": ["Works at Acme", "Speaks French"],
    },
    {
        "name": "Bob",
        "entityType": "person",
        "observations": ["Plays chess"],
    },
    {
        "name": "Acme",
        "entityType": "organization",
        "observations": ["Founded in 1999", "Makes anvils"],
    },
]

SAMPLE_RELATIONS: List[Dict[str, Any]] = [
    {"from": "Alice", "to": "Acme", "relationType": "works_at"},
    {"from": "Alice", "to": "Bob", "relationType": "knows"},
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Keep the developer's environment and working directory out of tests."""
    monkeypatch.delenv("MEMORY_FILE_PATH", raising=False)
    for key in list(os.environ):
        if key.startswith("KMEMORY_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def memory_path(tmp_path: Path) -> Path:
    """Path to a (not yet existing) memory file."""
    return tmp_path / "memory.json"


@pytest.fixture
def manager(memory_path: Path) -> KnowledgeGraphManager:
    """Manager over an empty graph."""
    return KnowledgeGraphManager(config=MemoryConfig(memory_file_path=memory_path))


@pytest.fixture
def seeded_manager(manager: KnowledgeGraphManager) -> KnowledgeGraphManager:
    """Manager over the sample graph (3 entities, 2 relations)."""
    manager.create_entities(SAMPLE_ENTITIES)
    manager.create_relations(SAMPLE_RELATIONS)
    return manager


@pytest.fixture
def log_db(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "kmemory.db"


@pytest.fixture
def logged_manager(memory_path: Path, log_db: Path) -> KnowledgeGraphManager:
    """Manager that journals every operation."""
    return KnowledgeGraphManager(
        config=MemoryConfig(memory_file_path=memory_path),
        logger=ObservabilityLogger(log_db),
    )


@pytest.fixture
def read_records():
    """Parse a backing file line by line."""

    def _read(path: Path) -> List[Dict[str, Any]]:
        return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]

    return _read
