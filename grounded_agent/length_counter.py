"""Length functions for context budgets."""

from __future__ import annotations

from typing import Callable


def estimate_tokens(text: str) -> int:
    """Rough estimate: ~4 chars per token."""
    return max(1, len(text) // 4) if text else 0


def create_length_counter(mode: str = "chars") -> Callable[[str], int]:
    """Factory for length functions.

    Modes:
        "chars"    - len(text); budgets are character counts
        "estimate" - len(text) // 4
        "tiktoken" - requires the tiktoken package
    """
    if mode == "chars":
        return len

    if mode == "estimate":
        return estimate_tokens

    if mode == "tiktoken":
        try:
            import tiktoken
        except ImportError:
            raise ImportError(
                "tiktoken not installed. Install with: pip install grounded-agent[tiktoken]"
            )
        enc = tiktoken.get_encoding("cl100k_base")
        return lambda text: len(enc.encode(text))

    raise ValueError(f"Unknown length counter mode: {mode}")
