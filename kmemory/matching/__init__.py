"""Similarity strategies and duplicate detection."""

from kmemory.matching.base import (
    SimilarityStrategy,
    EditSimilarityStrategy,
    SemanticSimilarityStrategy,
    register_strategy,
    get_strategy,
    list_strategies,
    load_strategies,
)
from kmemory.matching.duplicates import (
    DuplicateDetector,
    DuplicateOptions,
    DuplicateReport,
    PRESETS,
)

__all__ = [
    "SimilarityStrategy",
    "EditSimilarityStrategy",
    "SemanticSimilarityStrategy",
    "register_strategy",
    "get_strategy",
    "list_strategies",
    "load_strategies",
    "DuplicateDetector",
    "DuplicateOptions",
    "DuplicateReport",
    "PRESETS",
]
