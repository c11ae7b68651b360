"""Budget compaction shared by the context assembler and the summarizer.

Segments are removed oldest-first (list order is removal order) until the
total length fits the budget or only ``min_segments`` remain. Pinned
segments are never removed; if nothing removable is left the overage is
accepted.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..types import MemorySegment

logger = logging.getLogger(__name__)


def total_length(segments: list[MemorySegment], length: Callable[[str], int] = len) -> int:
    return sum(length(s.content) for s in segments)


def compact_segments(
    segments: list[MemorySegment],
    budget: int,
    *,
    min_segments: int = 1,
    length: Callable[[str], int] = len,
) -> list[MemorySegment]:
    """Return a new list with the oldest non-pinned segments dropped to fit ``budget``.

    The input list is not mutated.
    """
    result = list(segments)
    total = total_length(result, length)
    dropped = 0
    while total > budget and len(result) > min_segments:
        idx = next((i for i, s in enumerate(result) if not s.pinned), None)
        if idx is None:
            break
        removed = result.pop(idx)
        total -= length(removed.content)
        dropped += 1
    if dropped:
        logger.debug(f"Compaction dropped {dropped} segment(s), total={total} budget={budget}")
    if total > budget:
        logger.debug(f"Compaction accepted overage: total={total} budget={budget}")
    return result


def split_chunks(text: str, size: int) -> list[str]:
    """Split ``text`` into consecutive fixed-size chunks."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [text[i:i + size] for i in range(0, len(text), size)]
