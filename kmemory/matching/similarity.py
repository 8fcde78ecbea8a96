"""
String similarity functions used by duplicate detection.

Two modes:
- edit: Levenshtein distance normalized to [0, 1], case-insensitive
- semantic: 0.7 * edit + 0.3 * keyword cosine, both computed after name
  normalization and synonym substitution
"""

import math
import re
from collections import Counter
from typing import Dict, List

EDIT_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "have", "has", "had",
    "do", "does", "did", "will", "would", "could", "should", "may", "might",
    "must", "can",
})

# Near-synonym verbs mapped onto one canonical form
SYNONYMS: Dict[str, str] = {
    "create": "create",
    "make": "create",
    "delete": "delete",
    "remove": "delete",
    "find": "find",
    "search": "find",
    "update": "update",
    "modify": "update",
    "get": "get",
    "fetch": "get",
}

_PREFIX_RE = re.compile(r"^(get|set|is|has|can|should|will|did|does|do)_", re.IGNORECASE)
_SUFFIX_RE = re.compile(r"_(getter|setter|handler|manager|service|util|utils)$", re.IGNORECASE)
_CAMEL_RE = re.compile(r"([a-z])([A-Z])")


def levenshtein_distance(s1: str, s2: str) -> int:
    """Edit distance with case-insensitive character comparison."""
    a = s1.lower()
    b = s2.lower()
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def edit_similarity(s1: str, s2: str) -> float:
    """1 - distance / max(len1, len2). Identical (and two empty) strings give 1.0."""
    if s1 == s2:
        return 1.0
    max_len = max(len(s1), len(s2))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(s1, s2) / max_len


def extract_keywords(text: str) -> List[str]:
    """Lowercase whitespace tokens longer than 2 chars, minus stopwords."""
    return [
        word for word in text.lower().split()
        if len(word) > 2 and word not in STOPWORDS
    ]


def keyword_cosine_similarity(s1: str, s2: str) -> float:
    """Cosine similarity of term-frequency vectors (no IDF weighting).

    Both sides without keywords count as identical; one side without
    keywords scores 0.
    """
    tf1 = Counter(extract_keywords(s1))
    tf2 = Counter(extract_keywords(s2))
    if not tf1 and not tf2:
        return 1.0
    if not tf1 or not tf2:
        return 0.0

    norm1 = math.sqrt(sum(f * f for f in tf1.values()))
    norm2 = math.sqrt(sum(f * f for f in tf2.values()))
    dot = sum(freq * tf2[word] for word, freq in tf1.items() if word in tf2)
    return min(1.0, dot / (norm1 * norm2))


def normalize_entity_name(name: str) -> str:
    """Strip common verb prefixes/suffixes and split camelCase.

    Examples:
        "get_userName" -> "user name"
        "session_manager" -> "session"
    """
    name = _PREFIX_RE.sub("", name)
    name = _SUFFIX_RE.sub("", name)
    name = _CAMEL_RE.sub(r"\1 \2", name)
    return name.lower()


def apply_synonyms(text: str) -> str:
    """Replace each whitespace word with its canonical synonym."""
    words = text.lower().split()
    return " ".join(SYNONYMS.get(word, word) for word in words)


def prepare_for_semantic(text: str) -> str:
    return apply_synonyms(normalize_entity_name(text))


def semantic_similarity(s1: str, s2: str) -> float:
    """Blend of edit and keyword similarity over normalized text."""
    if s1 == s2:
        return 1.0
    a = prepare_for_semantic(s1)
    b = prepare_for_semantic(s2)
    score = EDIT_WEIGHT * edit_similarity(a, b) + KEYWORD_WEIGHT * keyword_cosine_similarity(a, b)
    return min(1.0, score)


__all__ = [
    "levenshtein_distance",
    "edit_similarity",
    "extract_keywords",
    "keyword_cosine_similarity",
    "normalize_entity_name",
    "apply_synonyms",
    "prepare_for_semantic",
    "semantic_similarity",
    "STOPWORDS",
    "SYNONYMS",
]
