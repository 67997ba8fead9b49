"""Fuzzy name matching used to suggest repairs for orphaned relations."""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING

from memgraph.results import Suggestion

if TYPE_CHECKING:
    from collections.abc import Iterable

    from memgraph.models import Entity

SUBSTRING_BOOST = 0.7
MIN_SIMILARITY = 0.3
_TIE_EPSILON = 0.01


def levenshtein_distance(a: str, b: str) -> int:
    """Unit-cost edit distance (insert, delete, substitute)."""
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        row = [i]
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                row.append(prev[j - 1])
            else:
                row.append(min(prev[j - 1], row[j - 1], prev[j]) + 1)
        prev = row
    return prev[-1]


def _score(a: str, b: str) -> tuple[float, int]:
    la, lb = a.lower(), b.lower()
    distance = levenshtein_distance(la, lb)
    longest = max(len(a), len(b))
    score = 1.0 if longest == 0 else 1 - distance / longest
    if la in lb or lb in la:
        score = max(score, SUBSTRING_BOOST)
    return score, distance


def similarity(a: str, b: str) -> float:
    """Normalised, case-insensitive similarity in [0, 1].

    Substring containment in either direction lifts the score to at least 0.7.
    """
    return _score(a, b)[0]


def _compare(x: tuple[float, int, Entity], y: tuple[float, int, Entity]) -> int:
    if abs(x[0] - y[0]) < _TIE_EPSILON:
        return x[1] - y[1]
    return -1 if x[0] > y[0] else 1


def find_similar_entities(
    target: str,
    entities: Iterable[Entity],
    max_suggestions: int = 3,
) -> list[Suggestion]:
    """Return up to max_suggestions entities whose names resemble target.

    Ordered by similarity descending; near-ties (within 0.01) go to the
    smaller edit distance.
    """
    candidates: list[tuple[float, int, Entity]] = []
    for entity in entities:
        score, distance = _score(target, entity.name)
        if score > MIN_SIMILARITY:
            candidates.append((score, distance, entity))
    candidates.sort(key=functools.cmp_to_key(_compare))
    return [
        Suggestion(name=e.name, entity_type=e.entity_type, similarity=round(score, 2))
        for score, _, e in candidates[: max(0, max_suggestions)]
    ]
