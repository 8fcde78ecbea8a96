"""Exceptions raised by the knowledge graph store."""


class KnowledgeGraphError(Exception):
    """Base class for store errors."""


class EntityNotFoundError(KnowledgeGraphError, KeyError):
    """An operation referenced an entity name that is not in the graph."""

    def __init__(self, entity_name: str):
        self.entity_name = entity_name
        super().__init__(f"Entity with name {entity_name} not found")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class DanglingRelationError(KnowledgeGraphError):
    """A relation endpoint names no entity (only raised in validation mode)."""

    def __init__(self, relation, missing):
        self.relation = relation
        self.missing = list(missing)
        super().__init__(
            f"Relation {relation.from_name} -[{relation.relation_type}]-> "
            f"{relation.to_name} references missing entities: {', '.join(self.missing)}"
        )
