"""BoundedCrawler: depth-, link-, and call-limited expansion from a seed URL.

The traversal runs on an explicit stack of frames. Each frame owns one
fetched node and the children still to visit; when a frame's children are
all resolved its subtree (pre-order) is written to the crawl cache and
appended to its parent's subtree. Cache keys carry the budget shape
(depth limit and link cap) so a deeper crawl never leaks into a shallower one.

Per-traversal state (call counter, visited set) lives in a
``TraversalState`` created per call. The ``QuotaLedger`` is the only state
shared between traversals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from ..types import CrawlBudget, CrawlNode, FetchedPage, TraversalState
from .cache import TTLCache
from .fetcher import is_absolute_http_url
from .quota import QuotaLedger

logger = logging.getLogger(__name__)


class PageSource(Protocol):
    async def fetch_page(self, url: str) -> FetchedPage: ...


@dataclass
class _Frame:
    node: CrawlNode
    children: list[str]
    collected: list[CrawlNode] = field(default_factory=list)
    next_child: int = 0
    complete: bool = True  # False once any part of the subtree was cut by budget


def cache_key(url: str, depth: int, budget: CrawlBudget) -> str:
    return f"{url}|{depth}|{budget.max_depth}|{budget.max_links_per_page}"


def filter_links(links: list[str], own_url: str, limit: int) -> list[str]:
    """Valid absolute http(s) links, deduplicated, self-links dropped, capped at ``limit``."""
    kept: list[str] = []
    for link in links:
        if link == own_url or link in kept or not is_absolute_http_url(link):
            continue
        kept.append(link)
        if len(kept) >= limit:
            break
    return kept


def combine_content(nodes: list[CrawlNode], separator: str = "\n\n") -> str:
    """Join non-empty node contents in traversal order."""
    return separator.join(n.content for n in nodes if n.content)


class BoundedCrawler:
    def __init__(
        self,
        fetcher: PageSource,
        quota: QuotaLedger,
        cache: TTLCache[tuple[CrawlNode, ...]],
    ) -> None:
        self.fetcher = fetcher
        self.quota = quota
        self.cache = cache

    async def crawl(self, seed_url: str, identity: str, budget: CrawlBudget) -> list[CrawlNode]:
        """Crawl from ``seed_url`` and return the visited nodes in pre-order.

        An empty list means "no information": quota already spent, invalid
        seed, or an unreachable seed. Budget exhaustion mid-traversal returns
        whatever was gathered so far.
        """
        if self.quota.remaining(identity, budget.max_calls_per_day) <= 0:
            logger.info(f"Crawl rejected for {identity}: daily quota exhausted")
            return []
        if not is_absolute_http_url(seed_url):
            logger.warning(f"Crawl rejected: invalid seed URL {seed_url!r}")
            return []

        state = TraversalState()
        opened = await self._open(seed_url, 0, identity, budget, state)
        if opened is None:
            return []
        if isinstance(opened, list):
            return opened

        root = opened.node
        if not root.content and not root.outbound_links:
            logger.info(f"Seed unreachable: {seed_url}")
            return []

        stack: list[_Frame] = [opened]
        result: list[CrawlNode] = []

        while stack:
            frame = stack[-1]
            if frame.next_child < len(frame.children) and not state.stopped:
                url = frame.children[frame.next_child]
                frame.next_child += 1
                child = await self._open(url, frame.node.depth + 1, identity, budget, state)
                if child is None:
                    if state.stopped:
                        frame.complete = False
                elif isinstance(child, list):
                    frame.collected.extend(child)
                else:
                    stack.append(child)
                continue

            if frame.next_child < len(frame.children):
                frame.complete = False
            stack.pop()
            if frame.complete:
                self.cache.set(
                    cache_key(frame.node.url, frame.node.depth, budget), tuple(frame.collected)
                )
            if stack:
                parent = stack[-1]
                parent.collected.extend(frame.collected)
                if not frame.complete:
                    parent.complete = False
            else:
                result = frame.collected

        logger.info(
            f"Crawl {seed_url} for {identity}: {len(result)} node(s), "
            f"{state.calls} fetch(es), stopped={state.stopped}"
        )
        return result

    async def _open(
        self,
        url: str,
        depth: int,
        identity: str,
        budget: CrawlBudget,
        state: TraversalState,
    ) -> _Frame | list[CrawlNode] | None:
        """Resolve one node.

        Returns a list for a cache hit (already complete subtree), a frame
        for a freshly fetched node, or None when the node is skipped or the
        budget ran out.
        """
        if url in state.visited:
            return None

        key = cache_key(url, depth, budget)
        cached = self.cache.get(key)
        if cached is not None:
            nodes = [
                n for n in cached
                if n.url not in state.visited and n.depth <= budget.max_depth
            ]
            state.visited.update(n.url for n in nodes)
            logger.debug(f"Crawl cache hit: {key} ({len(nodes)} node(s))")
            return nodes

        if state.calls >= budget.max_calls_per_request:
            logger.debug(f"Per-request budget exhausted at {url}")
            state.stopped = True
            return None
        if not self.quota.consume(identity, budget.max_calls_per_day):
            logger.debug(f"Daily quota exhausted for {identity} at {url}")
            state.stopped = True
            return None
        state.calls += 1

        try:
            page = await self.fetcher.fetch_page(url)
        except Exception as e:
            logger.warning(f"Fetch failed for {url}: {e}")
            page = FetchedPage(url=url)

        links = filter_links(page.links, url, budget.max_links_per_page)
        node = CrawlNode(url=url, depth=depth, content=page.text, outbound_links=tuple(links))
        state.visited.add(url)

        children = links if depth + 1 <= budget.max_depth else []
        return _Frame(node=node, children=list(children), collected=[node])
