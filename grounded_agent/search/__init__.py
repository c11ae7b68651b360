from __future__ import annotations

from ..types import SearchConfig, SearchResult
from .base import SearchProvider
from .google import GoogleCustomSearchProvider, rank_results


def create_search_provider(config: SearchConfig) -> SearchProvider:
    if config.provider == "google":
        return GoogleCustomSearchProvider(config)
    raise ValueError(f"Unknown search provider: {config.provider}")


__all__ = [
    "GoogleCustomSearchProvider",
    "SearchProvider",
    "SearchResult",
    "create_search_provider",
    "rank_results",
]
