"""
kmemory - persistent knowledge-graph memory store

Entities (named, typed records with free-text observations) and relations
(directed typed edges) kept in a single newline-delimited record file.

Core components:
- KnowledgeGraphManager: create/delete/search/open/batch/find-duplicates
- GraphStorage: whole-file load and atomic save of the record file
- SearchIndex: token index over entity names/types and observations
- DuplicateDetector: edit or semantic similarity with strict/standard/loose presets
- ObservabilityLogger: phase-based operation journal
"""

__version__ = "0.6.3"

from kmemory.core import (
    Entity,
    Relation,
    KnowledgeGraph,
    ObservationAddition,
    ObservationDeletion,
    AddedObservations,
    BatchResult,
    KnowledgeGraphError,
    EntityNotFoundError,
    DanglingRelationError,
    GraphStorage,
    SearchIndex,
    ObservabilityLogger,
    MemoryConfig,
    load_config,
    KnowledgeGraphManager,
)
from kmemory.matching import DuplicateDetector, DuplicateOptions, DuplicateReport

__all__ = [
    "Entity",
    "Relation",
    "KnowledgeGraph",
    "ObservationAddition",
    "ObservationDeletion",
    "AddedObservations",
    "BatchResult",
    "KnowledgeGraphError",
    "EntityNotFoundError",
    "DanglingRelationError",
    "GraphStorage",
    "SearchIndex",
    "ObservabilityLogger",
    "MemoryConfig",
    "load_config",
    "KnowledgeGraphManager",
    "DuplicateDetector",
    "DuplicateOptions",
    "DuplicateReport",
]
