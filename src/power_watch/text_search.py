"""
Approximate string search used to match user-typed place names against a list
of known names. Anything with the same search() signature can replace it.
"""

import difflib
from typing import Iterable, List, Tuple


def _normalize(value: str) -> str:
    return " ".join(value.casefold().replace("’", "'").replace("`", "'").split())


def search(query: str, candidates: Iterable[str], limit: int = 5, cutoff: float = 0.6) -> List[Tuple[str, float]]:
    """
    Rank candidates by similarity to the query.

    Returns:
        Up to `limit` (candidate, score) pairs, best first, score in [0, 1]
    """
    needle = _normalize(query)
    if not needle:
        return []

    scored = []
    for candidate in candidates:
        normalized = _normalize(candidate)
        if normalized == needle:
            score = 1.0
        elif normalized.startswith(needle) or needle in normalized:
            score = 0.9
        else:
            score = difflib.SequenceMatcher(None, needle, normalized).ratio()
        if score >= cutoff:
            scored.append((candidate, round(score, 3)))

    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:limit]
