"""
Base classes for similarity strategies.

A strategy scores how alike two strings are. Duplicate detection picks
one by name ("edit" or "semantic") and applies it field by field.
"""

from abc import ABC, abstractmethod
from typing import Dict, List

from kmemory.matching.similarity import edit_similarity, semantic_similarity


class SimilarityStrategy(ABC):
    """Abstract base class for string similarity strategies.

    - EditSimilarityStrategy: normalized Levenshtein similarity
    - SemanticSimilarityStrategy: edit + keyword cosine blend
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name (e.g., 'edit', 'semantic')."""
        pass

    @property
    def is_semantic(self) -> bool:
        return False

    @abstractmethod
    def similarity(self, first: str, second: str) -> float:
        """Score in [0, 1]; 1.0 for identical strings."""
        pass


# Strategy registry for loading by name
_STRATEGY_REGISTRY: Dict[str, type] = {}


def register_strategy(name: str):
    """Decorator to register a similarity strategy."""
    def decorator(cls):
        _STRATEGY_REGISTRY[name] = cls
        return cls
    return decorator


def get_strategy(name: str) -> type:
    """Get a strategy class by name."""
    if name not in _STRATEGY_REGISTRY:
        raise ValueError(f"Unknown strategy: {name}. Available: {list(_STRATEGY_REGISTRY.keys())}")
    return _STRATEGY_REGISTRY[name]


def list_strategies() -> List[str]:
    """List available strategy names."""
    return list(_STRATEGY_REGISTRY.keys())


def load_strategies(names: List[str], **kwargs) -> List[SimilarityStrategy]:
    """Load and instantiate strategies by name."""
    return [get_strategy(name)(**kwargs) for name in names]


@register_strategy("edit")
class EditSimilarityStrategy(SimilarityStrategy):
    """Case-insensitive Levenshtein similarity."""

    def __init__(self, **kwargs):
        pass

    @property
    def name(self) -> str:
        return "edit"

    def similarity(self, first: str, second: str) -> float:
        return edit_similarity(first, second)


@register_strategy("semantic")
class SemanticSimilarityStrategy(SimilarityStrategy):
    """Edit similarity blended with keyword overlap.

    Names are normalized (verb prefixes/suffixes, camelCase) and near-synonym
    verbs are mapped to a canonical form before scoring.
    """

    def __init__(self, **kwargs):
        pass

    @property
    def name(self) -> str:
        return "semantic"

    @property
    def is_semantic(self) -> bool:
        return True

    def similarity(self, first: str, second: str) -> float:
        return semantic_similarity(first, second)
