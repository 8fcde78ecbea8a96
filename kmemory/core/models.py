"""
Graph records: entities, relations and the graph that holds them.

Wire dicts use the camelCase keys of the on-disk format and the tool
surface (entityType, relationType, entityName, ...).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List


@dataclass
class Entity:
    """A named, typed record holding free-text observations."""

    name: str  # Unique key across the graph
    entity_type: str
    observations: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entity":
        return cls(
            name=data["name"],
            entity_type=data["entityType"],
            observations=list(data.get("observations", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "entityType": self.entity_type,
            "observations": list(self.observations),
        }


@dataclass(frozen=True)
class Relation:
    """A directed, typed edge between two entity names.

    Identified by the full (from, to, relationType) triple.
    """

    from_name: str
    to_name: str
    relation_type: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Relation":
        return cls(
            from_name=data["from"],
            to_name=data["to"],
            relation_type=data["relationType"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_name,
            "to": self.to_name,
            "relationType": self.relation_type,
        }

    @property
    def key(self):
        return (self.from_name, self.to_name, self.relation_type)


@dataclass
class ObservationAddition:
    """Observation strings to add to (or check against) a named entity."""

    entity_name: str
    contents: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObservationAddition":
        return cls(entity_name=data["entityName"], contents=list(data.get("contents", [])))

    def to_dict(self) -> Dict[str, Any]:
        return {"entityName": self.entity_name, "contents": list(self.contents)}


@dataclass
class ObservationDeletion:
    """Observation strings to remove from a named entity."""

    entity_name: str
    observations: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObservationDeletion":
        return cls(
            entity_name=data["entityName"],
            observations=list(data.get("observations", [])),
        )


@dataclass
class AddedObservations:
    """Result row of add_observations: what was actually appended."""

    entity_name: str
    added_observations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entityName": self.entity_name,
            "addedObservations": list(self.added_observations),
        }


@dataclass
class KnowledgeGraph:
    """The sole unit of persistence and of mutation."""

    entities: List[Entity] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeGraph":
        return cls(
            entities=[Entity.from_dict(e) for e in data.get("entities", [])],
            relations=[Relation.from_dict(r) for r in data.get("relations", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relations": [r.to_dict() for r in self.relations],
        }

    def find_entity(self, name: str):
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    def entity_names(self) -> set:
        return {e.name for e in self.entities}


@dataclass
class BatchResult:
    """Combined result of batch_create."""

    created_entities: List[Entity] = field(default_factory=list)
    created_relations: List[Relation] = field(default_factory=list)
    added_observations: List[AddedObservations] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "createdEntities": [e.to_dict() for e in self.created_entities],
            "createdRelations": [r.to_dict() for r in self.created_relations],
            "addedObservations": [a.to_dict() for a in self.added_observations],
        }


def induced_subgraph(graph: KnowledgeGraph, entities: Iterable[Entity]) -> KnowledgeGraph:
    """Project entities and keep only relations with both endpoints among them."""
    entities = list(entities)
    names = {e.name for e in entities}
    relations = [
        r for r in graph.relations if r.from_name in names and r.to_name in names
    ]
    return KnowledgeGraph(entities=entities, relations=relations)


__all__ = [
    "Entity",
    "Relation",
    "ObservationAddition",
    "ObservationDeletion",
    "AddedObservations",
    "KnowledgeGraph",
    "BatchResult",
    "induced_subgraph",
]
