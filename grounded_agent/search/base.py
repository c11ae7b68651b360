"""
Base class for search providers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..types import SearchResult


class SearchProvider(ABC):
    """
    Abstract base class for search providers.

    Search providers fetch web search results whose pages are then fetched
    and summarized under grounding.
    """

    # Provider name (used for registration and selection)
    name: str = "base"

    # Whether this provider requires an API key
    requires_api_key: bool = False

    @abstractmethod
    async def search(self, query: str, max_results: int = 3) -> list[SearchResult]:
        """
        Search for the given query.

        Args:
            query: Search query string
            max_results: Maximum number of results to return

        Returns:
            List of SearchResult objects, best first. Empty on any failure.
        """

    @abstractmethod
    def is_configured(self) -> bool:
        """
        Check if the provider is properly configured.

        Returns:
            True if the provider can be used, False otherwise
        """

    def format_results(self, results: list[SearchResult]) -> str:
        """Plain-text listing of results, used as the fallback source text."""
        if not results:
            return ""
        lines = []
        for i, result in enumerate(results, 1):
            lines.append(f"{i}. {result.title}")
            lines.append(f"URL: {result.url}")
            lines.append(f"{result.snippet}\n")
        return "\n".join(lines)
