"""
Duplicate detection for entities, relations and observations.

Candidates are compared against the existing graph (and, optionally, the
graph against itself) using a similarity strategy chosen by the options:

- entity score   = 0.7 * name + 0.3 * type (type forced to 1.0 when ignored)
- relation score = 0.35 * from + 0.35 * to + 0.3 * relationType
- observation score = similarity to each observation on the same entity

Relations reuse the entity threshold. Detection is read-only.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kmemory.core.models import Entity, KnowledgeGraph, ObservationAddition, Relation
from kmemory.matching.base import SimilarityStrategy, get_strategy
from kmemory.matching.similarity import edit_similarity

Preset = Literal["strict", "standard", "loose"]

PRESETS: Dict[str, Dict[str, Any]] = {
    "strict": {
        "entity_name_similarity_threshold": 0.95,
        "observation_similarity_threshold": 0.90,
        "semantic_matching_enabled": False,
    },
    "standard": {
        "entity_name_similarity_threshold": 0.80,
        "observation_similarity_threshold": 0.70,
        "semantic_matching_enabled": False,
    },
    "loose": {
        "entity_name_similarity_threshold": 0.60,
        "observation_similarity_threshold": 0.50,
        "semantic_matching_enabled": True,
    },
}

ENTITY_NAME_WEIGHT = 0.7
ENTITY_TYPE_WEIGHT = 0.3
RELATION_ENDPOINT_WEIGHT = 0.35
RELATION_TYPE_WEIGHT = 0.3

# Raw edit similarity above which a semantic-mode match is labelled "semantic"
SEMANTIC_MATCH_CUTOFF = 0.9

# Scores are rounded so weighted sums of exact matches land on 1.0 and
# threshold comparisons are not skewed by float noise.
_SCORE_DIGITS = 12


class DuplicateOptions(BaseModel):
    """Policy for duplicate detection.

    Threshold and semantic fields left unset are filled from the preset;
    explicitly set fields always win over the preset.
    Accepts both snake_case and the camelCase keys of the tool surface.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    preset: Preset = Field(default="standard", description="Named bundle of defaults")
    entity_name_similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    observation_similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    consider_entity_type: bool = Field(default=True, description="Whether entity type contributes to the score")
    semantic_matching_enabled: Optional[bool] = Field(default=None)
    check_existing_graph: bool = Field(default=False, description="Also scan the existing graph against itself")

    def resolve(self) -> "DuplicateOptions":
        """Return a copy with every preset-controlled field filled in."""
        preset_values = PRESETS[self.preset]
        update = {
            key: value
            for key, value in preset_values.items()
            if getattr(self, key) is None
        }
        return self.model_copy(update=update)

    def merged_with(self, overrides: Optional[Dict[str, Any]] = None) -> "DuplicateOptions":
        """Layer explicitly given override keys on top of these options."""
        if not overrides:
            return self
        explicit = DuplicateOptions.model_validate(overrides)
        update = {name: getattr(explicit, name) for name in explicit.model_fields_set}
        return self.model_copy(update=update)


# ---------------------------------------------------------------------------
# Report records
# ---------------------------------------------------------------------------

@dataclass
class DuplicateMatch:
    """Score and classification shared by every reported pair."""

    similarity_score: float
    match_type: str  # exact | semantic | fuzzy
    details: str
    duplicate_type: str  # structural | semantic

    def _score_fields(self) -> Dict[str, Any]:
        return {
            "similarityScore": self.similarity_score,
            "matchType": self.match_type,
            "details": self.details,
            "duplicateType": self.duplicate_type,
        }


@dataclass
class EntityDuplicate(DuplicateMatch):
    entity: Entity = None
    existing_entity: Entity = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "existingEntity": self.existing_entity.to_dict(),
            **self._score_fields(),
        }


@dataclass
class RelationDuplicate(DuplicateMatch):
    relation: Relation = None
    existing_relation: Relation = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relation": self.relation.to_dict(),
            "existingRelation": self.existing_relation.to_dict(),
            **self._score_fields(),
        }


@dataclass
class ObservationDuplicate(DuplicateMatch):
    entity_name: str = ""
    observation: str = ""
    existing_observation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityName": self.entity_name,
            "observation": self.observation,
            "existingObservation": self.existing_observation,
            **self._score_fields(),
        }


@dataclass
class ExistingEntityDuplicate(DuplicateMatch):
    entity1: Entity = None
    entity2: Entity = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity1": self.entity1.to_dict(),
            "entity2": self.entity2.to_dict(),
            **self._score_fields(),
        }


@dataclass
class ExistingRelationDuplicate(DuplicateMatch):
    relation1: Relation = None
    relation2: Relation = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relation1": self.relation1.to_dict(),
            "relation2": self.relation2.to_dict(),
            **self._score_fields(),
        }


@dataclass
class DuplicateStatistics:
    entity_duplicates: int = 0
    relation_duplicates: int = 0
    observation_duplicates: int = 0
    existing_entity_duplicates: int = 0
    existing_relation_duplicates: int = 0

    @property
    def total_duplicates(self) -> int:
        return (
            self.entity_duplicates
            + self.relation_duplicates
            + self.observation_duplicates
            + self.existing_entity_duplicates
            + self.existing_relation_duplicates
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalDuplicates": self.total_duplicates,
            "entityDuplicates": self.entity_duplicates,
            "relationDuplicates": self.relation_duplicates,
            "observationDuplicates": self.observation_duplicates,
            "existingEntityDuplicates": self.existing_entity_duplicates,
            "existingRelationDuplicates": self.existing_relation_duplicates,
        }


@dataclass
class DuplicateReport:
    duplicate_entities: List[EntityDuplicate] = field(default_factory=list)
    duplicate_relations: List[RelationDuplicate] = field(default_factory=list)
    duplicate_observations: List[ObservationDuplicate] = field(default_factory=list)
    existing_entities: List[ExistingEntityDuplicate] = field(default_factory=list)
    existing_relations: List[ExistingRelationDuplicate] = field(default_factory=list)

    @property
    def statistics(self) -> DuplicateStatistics:
        return DuplicateStatistics(
            entity_duplicates=len(self.duplicate_entities),
            relation_duplicates=len(self.duplicate_relations),
            observation_duplicates=len(self.duplicate_observations),
            existing_entity_duplicates=len(self.existing_entities),
            existing_relation_duplicates=len(self.existing_relations),
        )

    @property
    def has_duplicates(self) -> bool:
        return self.statistics.total_duplicates > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duplicateEntities": [d.to_dict() for d in self.duplicate_entities],
            "duplicateRelations": [d.to_dict() for d in self.duplicate_relations],
            "duplicateObservations": [d.to_dict() for d in self.duplicate_observations],
            "existingDuplicates": {
                "entities": [d.to_dict() for d in self.existing_entities],
                "relations": [d.to_dict() for d in self.existing_relations],
            },
            "statistics": self.statistics.to_dict(),
        }


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

class Comparison(NamedTuple):
    score: float
    match_type: str
    details: str
    duplicate_type: str


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def _label(match_type: str) -> str:
    return {"exact": "Exact match", "semantic": "Semantic match"}.get(match_type, "Fuzzy match")


class DuplicateDetector:
    """Scores candidate records against a graph under one resolved policy."""

    def __init__(self, options: Optional[DuplicateOptions] = None):
        self.options = (options or DuplicateOptions()).resolve()
        strategy_name = "semantic" if self.options.semantic_matching_enabled else "edit"
        self.strategy: SimilarityStrategy = get_strategy(strategy_name)()

    @property
    def entity_threshold(self) -> float:
        return self.options.entity_name_similarity_threshold

    @property
    def observation_threshold(self) -> float:
        return self.options.observation_similarity_threshold

    def _match_type(self, identical: bool, raw_pairs: Iterable[tuple]) -> str:
        if identical:
            return "exact"
        if self.strategy.is_semantic and all(
            edit_similarity(a, b) > SEMANTIC_MATCH_CUTOFF for a, b in raw_pairs
        ):
            return "semantic"
        return "fuzzy"

    def compare_entities(self, first: Entity, second: Entity) -> Comparison:
        name_sim = self.strategy.similarity(first.name, second.name)
        if self.options.consider_entity_type:
            type_sim = self.strategy.similarity(first.entity_type, second.entity_type)
            same_type = first.entity_type == second.entity_type
        else:
            type_sim = 1.0
            same_type = True

        score = round(ENTITY_NAME_WEIGHT * name_sim + ENTITY_TYPE_WEIGHT * type_sim, _SCORE_DIGITS)
        same_name = first.name == second.name
        match_type = self._match_type(same_name, [(first.name, second.name)])
        details = f"{_label(match_type)} (score: {_pct(score)}, name: {_pct(name_sim)}, type: {_pct(type_sim)})"
        duplicate_type = "structural" if same_name and same_type else "semantic"
        return Comparison(score, match_type, details, duplicate_type)

    def compare_relations(self, first: Relation, second: Relation) -> Comparison:
        from_sim = self.strategy.similarity(first.from_name, second.from_name)
        to_sim = self.strategy.similarity(first.to_name, second.to_name)
        type_sim = self.strategy.similarity(first.relation_type, second.relation_type)

        score = round(
            RELATION_ENDPOINT_WEIGHT * from_sim
            + RELATION_ENDPOINT_WEIGHT * to_sim
            + RELATION_TYPE_WEIGHT * type_sim,
            _SCORE_DIGITS,
        )
        identical = first.key == second.key
        match_type = self._match_type(identical, zip(first.key, second.key))
        details = (
            f"{_label(match_type)} (score: {_pct(score)}, from: {_pct(from_sim)}, "
            f"to: {_pct(to_sim)}, type: {_pct(type_sim)})"
        )
        duplicate_type = "structural" if identical else "semantic"
        return Comparison(score, match_type, details, duplicate_type)

    def compare_observations(self, observation: str, existing: str) -> Comparison:
        score = round(self.strategy.similarity(observation, existing), _SCORE_DIGITS)
        identical = observation == existing
        match_type = self._match_type(identical, [(observation, existing)])
        details = f"{_label(match_type)} (score: {_pct(score)})"
        duplicate_type = "structural" if identical else "semantic"
        return Comparison(score, match_type, details, duplicate_type)

    def find_duplicates(
        self,
        graph: KnowledgeGraph,
        entities: Optional[List[Entity]] = None,
        relations: Optional[List[Relation]] = None,
        observations: Optional[List[ObservationAddition]] = None,
        check_existing_graph: bool = False,
    ) -> DuplicateReport:
        """Compare candidates with the graph and build a report.

        Args:
            graph: Existing graph (never modified)
            entities: Candidate entities
            relations: Candidate relations
            observations: Candidate observations per entity name; names
                absent from the graph are skipped
            check_existing_graph: Also compare every pair of existing
                entities and every pair of existing relations

        Returns:
            DuplicateReport with per-category matches and statistics
        """
        report = DuplicateReport()

        for entity in entities or []:
            for existing in graph.entities:
                cmp = self.compare_entities(entity, existing)
                if cmp.score >= self.entity_threshold:
                    report.duplicate_entities.append(EntityDuplicate(
                        entity=entity, existing_entity=existing, **_score_kwargs(cmp)
                    ))

        for relation in relations or []:
            for existing in graph.relations:
                cmp = self.compare_relations(relation, existing)
                if cmp.score >= self.entity_threshold:
                    report.duplicate_relations.append(RelationDuplicate(
                        relation=relation, existing_relation=existing, **_score_kwargs(cmp)
                    ))

        for addition in observations or []:
            target = graph.find_entity(addition.entity_name)
            if target is None:
                continue
            for content in addition.contents:
                for existing in target.observations:
                    cmp = self.compare_observations(content, existing)
                    if cmp.score >= self.observation_threshold:
                        report.duplicate_observations.append(ObservationDuplicate(
                            entity_name=addition.entity_name,
                            observation=content,
                            existing_observation=existing,
                            **_score_kwargs(cmp),
                        ))

        if check_existing_graph or self.options.check_existing_graph:
            self._scan_existing(graph, report)

        return report

    def _scan_existing(self, graph: KnowledgeGraph, report: DuplicateReport) -> None:
        """Pairwise scan of the graph against itself (each pair once)."""
        for i, first in enumerate(graph.entities):
            for second in graph.entities[i + 1:]:
                cmp = self.compare_entities(first, second)
                if cmp.score >= self.entity_threshold:
                    report.existing_entities.append(ExistingEntityDuplicate(
                        entity1=first, entity2=second, **_score_kwargs(cmp)
                    ))

        for i, first in enumerate(graph.relations):
            for second in graph.relations[i + 1:]:
                cmp = self.compare_relations(first, second)
                if cmp.score >= self.entity_threshold:
                    report.existing_relations.append(ExistingRelationDuplicate(
                        relation1=first, relation2=second, **_score_kwargs(cmp)
                    ))


def _score_kwargs(cmp: Comparison) -> Dict[str, Any]:
    return {
        "similarity_score": cmp.score,
        "match_type": cmp.match_type,
        "details": cmp.details,
        "duplicate_type": cmp.duplicate_type,
    }


__all__ = [
    "DuplicateOptions",
    "DuplicateDetector",
    "DuplicateReport",
    "DuplicateStatistics",
    "DuplicateMatch",
    "EntityDuplicate",
    "RelationDuplicate",
    "ObservationDuplicate",
    "ExistingEntityDuplicate",
    "ExistingRelationDuplicate",
    "Comparison",
    "PRESETS",
]
