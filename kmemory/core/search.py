"""
In-memory search index over a graph snapshot.

Two token indexes are kept:
- entity index: one document per entity, text "<name> <entityType>",
  keyed by the entity's position in the graph
- observation index: one document per observation, keyed
  "<entityIndex>-<observationIndex>"

The index is a pure function of the snapshot it was built from. It is
thrown away and rebuilt on every load and save, never patched.
"""

import re
import unicodedata
from typing import Dict, Hashable, Iterable, List, Optional

from kmemory.core.models import KnowledgeGraph, induced_subgraph

DEFAULT_SEARCH_LIMIT = 100

# Match grades, best first
_EXACT = 3
_PREFIX = 2
_SUBSTRING = 1

_TOKEN_RE = re.compile(r"\w+")


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------

def _normalize(text: str) -> str:
    """Casefold and strip accents."""
    text = unicodedata.normalize("NFD", text)
    text = "".join(c for c in text if unicodedata.category(c) != "Mn")
    return text.casefold()


def _decompose(text: str) -> str:
    """Casefold without dropping combining marks."""
    return unicodedata.normalize("NFD", text).casefold()


def tokenize(text: str) -> List[str]:
    """Split normalized text into word tokens."""
    return _TOKEN_RE.findall(_normalize(text))


# ---------------------------------------------------------------------------
# Token index
# ---------------------------------------------------------------------------

class TokenIndex:
    """Maps word tokens to the documents containing them.

    A query token matches a document token exactly, as a prefix, or as a
    substring. Every query token must match for a document to be returned.
    Queries without word characters (e.g. "c++" reduces to "c", but "--"
    has no tokens) fall back to a plain substring test on the document text.
    A query made only of combining marks is tested against the document
    text with its marks kept.
    """

    def __init__(self):
        self._texts: Dict[Hashable, str] = {}
        self._raw: Dict[Hashable, str] = {}
        self._order: Dict[Hashable, int] = {}
        self._postings: Dict[str, List[Hashable]] = {}

    def __len__(self) -> int:
        return len(self._texts)

    def add(self, doc_id: Hashable, text: str) -> None:
        normalized = _normalize(str(text))
        self._texts[doc_id] = normalized
        self._raw[doc_id] = _decompose(str(text))
        self._order[doc_id] = len(self._order)
        for token in set(_TOKEN_RE.findall(normalized)):
            self._postings.setdefault(token, []).append(doc_id)

    def search(self, query: str, limit: Optional[int] = DEFAULT_SEARCH_LIMIT) -> List[Hashable]:
        """Return matching document ids, best matches first."""
        query_norm = _normalize(query).strip()
        if not query_norm:
            marks = _decompose(query).strip()
            if not marks:
                return []
            hits = [doc_id for doc_id, text in self._raw.items() if marks in text]
            return hits[:limit] if limit else hits

        query_tokens = _TOKEN_RE.findall(query_norm)
        if not query_tokens:
            hits = [doc_id for doc_id, text in self._texts.items() if query_norm in text]
            return hits[:limit] if limit else hits

        scores: Optional[Dict[Hashable, int]] = None
        for query_token in dict.fromkeys(query_tokens):
            grades = self._grade(query_token)
            if scores is None:
                scores = grades
            else:
                scores = {
                    doc_id: score + grades[doc_id]
                    for doc_id, score in scores.items()
                    if doc_id in grades
                }
            if not scores:
                return []

        ranked = sorted(scores, key=lambda d: (-scores[d], self._order[d]))
        return ranked[:limit] if limit else ranked

    def _grade(self, query_token: str) -> Dict[Hashable, int]:
        """Best match grade of one query token, per document."""
        grades: Dict[Hashable, int] = {}
        for token, doc_ids in self._postings.items():
            if token == query_token:
                grade = _EXACT
            elif token.startswith(query_token):
                grade = _PREFIX
            elif query_token in token:
                grade = _SUBSTRING
            else:
                continue
            for doc_id in doc_ids:
                if grades.get(doc_id, 0) < grade:
                    grades[doc_id] = grade
        return grades


# ---------------------------------------------------------------------------
# Graph search index
# ---------------------------------------------------------------------------

class SearchIndex:
    """Entity and observation indexes for one graph snapshot."""

    def __init__(self, limit: int = DEFAULT_SEARCH_LIMIT):
        """Initialize an empty index.

        Args:
            limit: Maximum hits taken from each of the two indexes per query
        """
        self.limit = limit
        self._graph = KnowledgeGraph()
        self._entity_index = TokenIndex()
        self._observation_index = TokenIndex()

    @classmethod
    def build(cls, graph: KnowledgeGraph, limit: int = DEFAULT_SEARCH_LIMIT) -> "SearchIndex":
        index = cls(limit=limit)
        index.rebuild(graph)
        return index

    @property
    def graph(self) -> KnowledgeGraph:
        return self._graph

    def rebuild(self, graph: KnowledgeGraph) -> None:
        """Discard both indexes and index the given snapshot from scratch."""
        entity_index = TokenIndex()
        observation_index = TokenIndex()

        for position, entity in enumerate(graph.entities):
            entity_index.add(position, f"{entity.name} {entity.entity_type}")
            for obs_position, observation in enumerate(entity.observations):
                observation_index.add(f"{position}-{obs_position}", observation)

        self._graph = graph
        self._entity_index = entity_index
        self._observation_index = observation_index

    def matching_positions(self, query: str) -> set:
        """Entity positions matched by name/type or by any observation."""
        if not query.strip():
            return set()

        positions = set(self._entity_index.search(query, self.limit))
        for doc_id in self._observation_index.search(query, self.limit):
            entity_position, _, _ = doc_id.partition("-")
            positions.add(int(entity_position))
        return positions

    def search(self, query: str) -> KnowledgeGraph:
        """Induced subgraph of entities matching the query.

        An empty or whitespace-only query returns an empty graph.
        """
        positions = self.matching_positions(query)
        entities = [e for i, e in enumerate(self._graph.entities) if i in positions]
        return induced_subgraph(self._graph, entities)

    def open_nodes(self, names: Iterable[str]) -> KnowledgeGraph:
        """Induced subgraph of entities with exactly the given names."""
        wanted = set(names)
        entities = [e for e in self._graph.entities if e.name in wanted]
        return induced_subgraph(self._graph, entities)


__all__ = [
    "TokenIndex",
    "SearchIndex",
    "tokenize",
    "DEFAULT_SEARCH_LIMIT",
]
