"""
KnowledgeGraphManager - the public operation surface of the store.

Every operation follows the same cycle under one lock:

    load -> validate/compute -> (mutate -> save)

Queries (read_graph, search_nodes, open_nodes, find_duplicates) skip the
save. The search index is rebuilt by the storage layer on every load and
save, so it always reflects the snapshot the operation is working on.
"""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from kmemory.core.config import MemoryConfig, load_config
from kmemory.core.errors import DanglingRelationError, EntityNotFoundError
from kmemory.core.models import (
    AddedObservations,
    BatchResult,
    Entity,
    KnowledgeGraph,
    ObservationAddition,
    ObservationDeletion,
    Relation,
)
from kmemory.core.observability import ObservabilityLogger
from kmemory.core.search import SearchIndex
from kmemory.core.storage import GraphStorage
from kmemory.matching.duplicates import DuplicateDetector, DuplicateOptions, DuplicateReport


def _coerce(items: Optional[Iterable[Any]], cls) -> List[Any]:
    """Accept model instances or their wire dicts."""
    return [item if isinstance(item, cls) else cls.from_dict(item) for item in items or []]


class KnowledgeGraphManager:
    """Create, delete, search and deduplicate records in one graph file."""

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        memory_path: Optional[Path] = None,
        logger: Optional[ObservabilityLogger] = None,
    ):
        """Initialize the manager.

        Args:
            config: Store configuration (defaults to MemoryConfig())
            memory_path: Overrides config.memory_file_path
            logger: Operation journal; built from config.log_db_path when omitted
        """
        self.config = config or MemoryConfig()
        self.memory_path = Path(memory_path) if memory_path else self.config.memory_file_path
        if logger is None and self.config.log_db_path:
            logger = ObservabilityLogger(self.config.log_db_path)
        self.logger = logger

        self.index = SearchIndex(limit=self.config.search_limit)
        self.storage = GraphStorage(self.memory_path, on_rebuild=self.index.rebuild)
        self._lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        config_path: Optional[Path] = None,
        cli_overrides: Optional[Dict[str, Any]] = None,
    ) -> "KnowledgeGraphManager":
        return cls(config=load_config(config_path, cli_overrides=cli_overrides))

    # ------------------------------------------------------------------
    # Load / save cycle
    # ------------------------------------------------------------------

    @contextmanager
    def _operation(self, name: str):
        """Serialize one operation and journal any failure before re-raising."""
        with self._lock:
            try:
                yield
            except Exception as e:
                if self.logger:
                    self.logger.log_error(
                        type(e).__name__, operation=name, details={"message": str(e)}
                    )
                raise

    def _load(self) -> KnowledgeGraph:
        missing = not self.storage.exists()
        graph = self.storage.load()
        if self.logger:
            self.logger.log_load(
                str(self.memory_path), len(graph.entities), len(graph.relations), missing=missing
            )
        return graph

    def _save(self, graph: KnowledgeGraph) -> None:
        self.storage.save(graph)
        if self.logger:
            self.logger.log_save(str(self.memory_path), len(graph.entities), len(graph.relations))

    # ------------------------------------------------------------------
    # In-memory mutations (shared by single operations and batch_create)
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_entities(graph: KnowledgeGraph, entities: List[Entity]) -> List[Entity]:
        names = graph.entity_names()
        inserted = []
        for entity in entities:
            if entity.name in names:
                continue
            names.add(entity.name)
            inserted.append(entity)
        graph.entities.extend(inserted)
        return inserted

    def _insert_relations(self, graph: KnowledgeGraph, relations: List[Relation]) -> List[Relation]:
        if self.config.validate_relations:
            names = graph.entity_names()
            for relation in relations:
                missing = [n for n in (relation.from_name, relation.to_name) if n not in names]
                if missing:
                    raise DanglingRelationError(relation, list(dict.fromkeys(missing)))

        keys = {r.key for r in graph.relations}
        inserted = []
        for relation in relations:
            if relation.key in keys:
                continue
            keys.add(relation.key)
            inserted.append(relation)
        graph.relations.extend(inserted)
        return inserted

    @staticmethod
    def _append_observations(
        graph: KnowledgeGraph, additions: List[ObservationAddition]
    ) -> List[AddedObservations]:
        # Resolve every target first so a missing entity aborts before any change
        targets = []
        for addition in additions:
            entity = graph.find_entity(addition.entity_name)
            if entity is None:
                raise EntityNotFoundError(addition.entity_name)
            targets.append((addition, entity))

        results = []
        for addition, entity in targets:
            added = []
            for content in addition.contents:
                if content not in entity.observations:
                    entity.observations.append(content)
                    added.append(content)
            results.append(AddedObservations(entity_name=addition.entity_name, added_observations=added))
        return results

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_entities(self, entities: Sequence[Union[Entity, dict]]) -> List[Entity]:
        """Insert entities whose names are new; return only those inserted."""
        entities = _coerce(entities, Entity)
        with self._operation("create_entities"):
            graph = self._load()
            inserted = self._insert_entities(graph, entities)
            self._save(graph)
            if self.logger:
                self.logger.log_create("entity", [e.name for e in inserted], requested=len(entities))
            return inserted

    def create_relations(self, relations: Sequence[Union[Relation, dict]]) -> List[Relation]:
        """Insert relations whose (from, to, relationType) triple is new."""
        relations = _coerce(relations, Relation)
        with self._operation("create_relations"):
            graph = self._load()
            inserted = self._insert_relations(graph, relations)
            self._save(graph)
            if self.logger:
                self.logger.log_create(
                    "relation", [_relation_label(r) for r in inserted], requested=len(relations)
                )
            return inserted

    def add_observations(
        self, observations: Sequence[Union[ObservationAddition, dict]]
    ) -> List[AddedObservations]:
        """Append new observation strings to existing entities.

        Raises:
            EntityNotFoundError: If any named entity is absent; nothing is written
        """
        additions = _coerce(observations, ObservationAddition)
        with self._operation("add_observations"):
            graph = self._load()
            results = self._append_observations(graph, additions)
            self._save(graph)
            if self.logger:
                self.logger.log_create(
                    "observation",
                    [f"{r.entity_name}: {o}" for r in results for o in r.added_observations],
                )
            return results

    def delete_entities(self, entity_names: Iterable[str]) -> None:
        """Remove entities and every relation touching them.

        A bare string is treated as a single name.
        """
        if isinstance(entity_names, str):
            entity_names = [entity_names]
        names = set(entity_names)
        with self._operation("delete_entities"):
            graph = self._load()
            graph.entities = [e for e in graph.entities if e.name not in names]
            graph.relations = [
                r for r in graph.relations
                if r.from_name not in names and r.to_name not in names
            ]
            self._save(graph)
            if self.logger:
                self.logger.log_delete("entity", sorted(names))

    def delete_observations(self, deletions: Sequence[Union[ObservationDeletion, dict]]) -> None:
        """Remove observation strings by value; unknown entities are ignored."""
        deletions = _coerce(deletions, ObservationDeletion)
        with self._operation("delete_observations"):
            graph = self._load()
            removed = []
            for deletion in deletions:
                entity = graph.find_entity(deletion.entity_name)
                if entity is None:
                    continue
                doomed = set(deletion.observations)
                removed.extend(f"{entity.name}: {o}" for o in entity.observations if o in doomed)
                entity.observations = [o for o in entity.observations if o not in doomed]
            self._save(graph)
            if self.logger:
                self.logger.log_delete("observation", removed)

    def delete_relations(self, relations: Sequence[Union[Relation, dict]]) -> None:
        """Remove relations by exact triple; unknown relations are ignored."""
        keys = {r.key for r in _coerce(relations, Relation)}
        with self._operation("delete_relations"):
            graph = self._load()
            removed = [r for r in graph.relations if r.key in keys]
            graph.relations = [r for r in graph.relations if r.key not in keys]
            self._save(graph)
            if self.logger:
                self.logger.log_delete("relation", [_relation_label(r) for r in removed])

    def batch_create(
        self,
        entities: Optional[Sequence[Union[Entity, dict]]] = None,
        relations: Optional[Sequence[Union[Relation, dict]]] = None,
        observations: Optional[Sequence[Union[ObservationAddition, dict]]] = None,
    ) -> BatchResult:
        """Create entities, then relations, then observations, with one save.

        A failure in any step leaves the file untouched.
        """
        entities = _coerce(entities, Entity)
        relations = _coerce(relations, Relation)
        additions = _coerce(observations, ObservationAddition)
        with self._operation("batch_create"):
            graph = self._load()
            result = BatchResult()
            if entities:
                result.created_entities = self._insert_entities(graph, entities)
            if relations:
                result.created_relations = self._insert_relations(graph, relations)
            if additions:
                result.added_observations = self._append_observations(graph, additions)
            self._save(graph)
            if self.logger:
                self.logger.log_create("batch", [
                    *(e.name for e in result.created_entities),
                    *(_relation_label(r) for r in result.created_relations),
                ])
            return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def read_graph(self) -> KnowledgeGraph:
        with self._operation("read_graph"):
            return self._load()

    def search_nodes(self, query: str) -> KnowledgeGraph:
        """Induced subgraph of entities whose name, type or observations match."""
        with self._operation("search_nodes"):
            self._load()
            result = self.index.search(query)
            if self.logger:
                self.logger.log_search("search_nodes", query, len(result.entities))
            return result

    def open_nodes(self, names: Iterable[str]) -> KnowledgeGraph:
        """Induced subgraph of entities with exactly the given names."""
        names = list(names)
        with self._operation("open_nodes"):
            self._load()
            result = self.index.open_nodes(names)
            if self.logger:
                self.logger.log_search("open_nodes", names, len(result.entities))
            return result

    def find_duplicates(
        self,
        entities: Optional[Sequence[Union[Entity, dict]]] = None,
        relations: Optional[Sequence[Union[Relation, dict]]] = None,
        observations: Optional[Sequence[Union[ObservationAddition, dict]]] = None,
        check_existing_graph: bool = False,
        options: Optional[Union[DuplicateOptions, Dict[str, Any]]] = None,
    ) -> DuplicateReport:
        """Score candidates (and optionally the graph itself) for duplicates.

        Args:
            options: DuplicateOptions, or a dict of overrides layered on the
                configured defaults (snake_case or camelCase keys)
        """
        if isinstance(options, DuplicateOptions):
            resolved = options
        else:
            resolved = self.config.duplicates.merged_with(options)
        detector = DuplicateDetector(resolved)

        with self._operation("find_duplicates"):
            graph = self._load()
            report = detector.find_duplicates(
                graph,
                entities=_coerce(entities, Entity),
                relations=_coerce(relations, Relation),
                observations=_coerce(observations, ObservationAddition),
                check_existing_graph=check_existing_graph,
            )
            if self.logger:
                self.logger.log_duplicates(
                    report.statistics.to_dict(),
                    options=detector.options.model_dump(),
                )
            return report


def _relation_label(relation: Relation) -> str:
    return f"{relation.from_name} -[{relation.relation_type}]-> {relation.to_name}"


__all__ = ["KnowledgeGraphManager"]
