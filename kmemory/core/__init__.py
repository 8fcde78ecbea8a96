"""Core store: records, storage, search index, manager."""

from kmemory.core.models import (
    Entity,
    Relation,
    KnowledgeGraph,
    ObservationAddition,
    ObservationDeletion,
    AddedObservations,
    BatchResult,
)
from kmemory.core.errors import KnowledgeGraphError, EntityNotFoundError, DanglingRelationError
from kmemory.core.storage import GraphStorage, resolve_memory_path
from kmemory.core.search import SearchIndex, TokenIndex
from kmemory.core.observability import ObservabilityLogger, LogEntry
from kmemory.core.config import MemoryConfig, load_config
from kmemory.core.manager import KnowledgeGraphManager

__all__ = [
    # Records
    "Entity",
    "Relation",
    "KnowledgeGraph",
    "ObservationAddition",
    "ObservationDeletion",
    "AddedObservations",
    "BatchResult",
    # Errors
    "KnowledgeGraphError",
    "EntityNotFoundError",
    "DanglingRelationError",
    # Storage / index
    "GraphStorage",
    "resolve_memory_path",
    "SearchIndex",
    "TokenIndex",
    # Observability
    "ObservabilityLogger",
    "LogEntry",
    # Config
    "MemoryConfig",
    "load_config",
    # Manager
    "KnowledgeGraphManager",
]
