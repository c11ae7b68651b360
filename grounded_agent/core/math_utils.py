"""Vector helpers for similarity recall."""

from __future__ import annotations


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity; 0.0 for zero or mismatched vectors."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a) ** 0.5
    norm_b = sum(x * x for x in b) ** 0.5
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def rank_by_similarity(
    query: list[float],
    candidates: list[list[float]],
    limit: int,
    threshold: float = 0.0,
) -> list[tuple[int, float]]:
    """Return ``(index, similarity)`` of the best ``limit`` candidates at or above ``threshold``.

    Ties keep candidate order so results are deterministic.
    """
    scored = [
        (i, cosine_similarity(query, vec))
        for i, vec in enumerate(candidates)
    ]
    scored = [(i, s) for i, s in scored if s >= threshold]
    scored.sort(key=lambda pair: (-pair[1], pair[0]))
    return scored[:max(0, limit)]
