"""
Google Custom Search JSON API provider.

Requires an API key and a search engine ID, read from the environment
variables named in the ``search`` config section.
"""

from __future__ import annotations

import asyncio
import logging
import re
from urllib.parse import urlparse

import httpx

from ..config import resolve_secret
from ..types import SearchConfig, SearchResult
from .base import SearchProvider

logger = logging.getLogger(__name__)

API_URL = "https://www.googleapis.com/customsearch/v1"
MAX_ATTEMPTS = 3
RETRY_BASE_SECONDS = 0.5

_SOCIAL_RE = re.compile(
    r"twitter|x\.com|facebook|instagram|threads|note\.com|blog|tiktok|pinterest|linkedin|youtube",
    re.IGNORECASE,
)


def _domain(url: str) -> str:
    host = urlparse(url).hostname or ""
    return host[4:] if host.startswith("www.") else host


def rank_results(
    results: list[SearchResult],
    excluded_domains: list[str],
    priority_domains: list[str],
    max_results: int,
) -> list[SearchResult]:
    """Filter, order and deduplicate raw results.

    Drops non-http(s) links and any link containing an excluded fragment,
    puts priority domains first and social/blog links after them (stable
    within each band), keeps one result per domain, caps at ``max_results``.
    """
    def band(result: SearchResult) -> int:
        host = _domain(result.url)
        if any(host.endswith(d) or d in host for d in priority_domains):
            return 2
        if _SOCIAL_RE.search(result.url):
            return 1
        return 0

    kept = [
        r for r in results
        if re.match(r"^https?://", r.url)
        and not any(fragment in r.url for fragment in excluded_domains)
    ]
    kept.sort(key=band, reverse=True)

    seen: set[str] = set()
    ranked: list[SearchResult] = []
    for r in kept:
        host = _domain(r.url)
        if host in seen:
            continue
        seen.add(host)
        ranked.append(r)
        if len(ranked) >= max_results:
            break
    return ranked


class GoogleCustomSearchProvider(SearchProvider):
    """Search provider using the Google Custom Search JSON API."""

    name = "google"
    requires_api_key = True

    def __init__(
        self,
        config: SearchConfig | None = None,
        api_key: str | None = None,
        cse_id: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or SearchConfig()
        self._api_key = api_key or resolve_secret(self.config.api_key_env)
        self._cse_id = cse_id or resolve_secret(self.config.cse_id_env)
        self._timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self._api_key and self._cse_id)

    async def search(self, query: str, max_results: int = 3) -> list[SearchResult]:
        if not self.is_configured():
            logger.warning("Google search not configured (API key or CSE ID missing)")
            return []
        if not query.strip():
            logger.warning("Google search called with an empty query")
            return []

        params = {
            "key": self._api_key,
            "cx": self._cse_id,
            "q": query,
            "num": 10,
        }
        if self.config.language:
            params["lr"] = f"lang_{self.config.language}"
            params["hl"] = self.config.language

        for attempt in range(MAX_ATTEMPTS):
            try:
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    response = await client.get(API_URL, params=params)
                    response.raise_for_status()
                    data = response.json()
                break
            except httpx.TimeoutException:
                logger.warning(f"Google search timed out for query: {query}")
            except httpx.HTTPStatusError as e:
                logger.warning(f"Google search HTTP error: {e.response.status_code}")
                if e.response.status_code < 500 and e.response.status_code != 429:
                    return []
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Google search failed: {e}")
            if attempt < MAX_ATTEMPTS - 1:
                await asyncio.sleep(RETRY_BASE_SECONDS * (2 ** attempt))
        else:
            return []

        items = data.get("items") or []
        if not items:
            if data.get("error"):
                logger.warning(f"Google search error payload: {data['error']}")
            return []

        raw = [
            SearchResult(
                title=item.get("title", "Untitled"),
                url=item.get("link", ""),
                snippet=item.get("snippet", ""),
            )
            for item in items
        ]
        results = rank_results(
            raw,
            self.config.excluded_domains,
            self.config.priority_domains,
            max_results,
        )
        logger.info(f"Google returned {len(results)}/{len(raw)} usable results for query: {query}")
        return results
