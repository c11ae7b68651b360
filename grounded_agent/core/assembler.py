"""ContextAssembler: merge memory tiers into a budgeted message list."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from ..length_counter import create_length_counter
from ..types import AssemblyConfig, ConversationTurn, DerivedAnalysis, MemoryScope, MemorySegment
from .analyzer import ConversationAnalyzer
from .cache import TTLCache, make_key
from .compaction import compact_segments
from .memory import MemoryStoreAdapter, format_profile

logger = logging.getLogger(__name__)

R = TypeVar("R")

ANALYSIS_LABELS = {
    "topic": "Current topic",
    "unresolved": "Unresolved question",
    "expectation": "User expects",
    "tone": "Conversation tone",
}


class ContextAssembler:
    """Assemble conversation context within a length budget.

    Output order (top to bottom in the final prompt):
    1. derived analyses and the long-term summary (system role)
    2. the user's profile
    3. the group summary, when the conversation belongs to a group
    4. similarity-recalled exchanges
    5. short-term buffer, oldest to newest

    List order is also removal order during compaction; pinned segments are
    never removed.

    Analyzer output is cached per thread and turn contents, so assembling
    the same stored state twice yields the same segments.
    """

    def __init__(
        self,
        memory: MemoryStoreAdapter,
        config: AssemblyConfig | None = None,
        analyzer: ConversationAnalyzer | None = None,
        length: Callable[[str], int] | None = None,
        analysis_cache: TTLCache[DerivedAnalysis] | None = None,
    ) -> None:
        self.memory = memory
        self.config = config or AssemblyConfig()
        self.analyzer = analyzer
        self.analysis_cache = analysis_cache if analysis_cache is not None else TTLCache(name="analysis")
        self.length = length or create_length_counter(self.config.length_counter)
        self._pinned = frozenset(self.config.pinned_categories)

    def is_pinned(self, category: str) -> bool:
        return category in self._pinned

    async def _tier(self, name: str, fn: Callable[[], Awaitable[R]], empty: R) -> R:
        try:
            return await fn()
        except Exception as e:
            logger.warning(f"Context tier '{name}' unavailable: {e}")
            return empty

    async def assemble(
        self,
        identity: str,
        thread_id: str,
        budget_chars: int | None = None,
        *,
        group_id: str | None = None,
        analysis: DerivedAnalysis | None = None,
        query: str | None = None,
    ) -> list[MemorySegment]:
        """Build the compacted segment list for one conversation thread.

        ``query`` drives similarity recall; it defaults to the latest user
        turn. ``analysis`` skips the analyzer call when supplied.
        """
        budget = self.config.budget_chars if budget_chars is None else budget_chars
        scope = MemoryScope.thread(identity, thread_id)

        turns: list[ConversationTurn] = await self._tier(
            "short_term",
            lambda: self.memory.get_recent_turns(scope, self.config.short_term_turns),
            [],
        )
        summary = await self._tier("long_term_summary", lambda: self.memory.get_summary(scope), None)
        profile = await self._tier("profile", lambda: self.memory.get_profile(identity, group_id), None)
        group_summary = None
        if group_id:
            group_summary = await self._tier(
                "group_summary",
                lambda: self.memory.get_summary(MemoryScope.group(group_id)),
                None,
            )

        if query is None:
            query = next((t.text for t in reversed(turns) if t.role == "user"), "")
        recalled = await self._tier(
            "recall",
            lambda: self.memory.recall(
                identity,
                query,
                self.config.recall_limit,
                self.config.recall_threshold,
                group_id,
            ),
            [],
        )

        if analysis is None and self.analyzer is not None and self.config.analysis_enabled:
            analysis = await self._tier("analysis", lambda: self._analyze(scope, turns), None)

        segments: list[MemorySegment] = []
        if analysis is not None:
            for category, text in analysis.items():
                segments.append(MemorySegment(
                    role="system",
                    content=f"{ANALYSIS_LABELS[category]}: {text}",
                    pinned=self.is_pinned(category),
                    category=category,
                ))
        if summary is not None and summary.summary:
            segments.append(MemorySegment(
                role="system",
                content=summary.summary,
                pinned=self.is_pinned("long_term_summary"),
                category="long_term_summary",
            ))
        profile_text = format_profile(profile) if profile is not None else ""
        if profile_text:
            segments.append(MemorySegment(
                role="system",
                content=profile_text,
                pinned=self.is_pinned("profile"),
                category="profile",
            ))
        if group_summary is not None and group_summary.summary:
            segments.append(MemorySegment(
                role="system",
                content=f"Group conversation so far: {group_summary.summary}",
                pinned=self.is_pinned("group_summary"),
                category="group_summary",
            ))
        recalled_texts = {t.text for t in turns}
        for item in recalled:
            if item.user_text in recalled_texts:
                continue
            segments.append(MemorySegment(
                role="system",
                content=f"Related earlier exchange:\nuser: {item.user_text}\nassistant: {item.assistant_text}",
                pinned=self.is_pinned("recall"),
                category="recall",
            ))
        for turn in turns:
            segments.append(MemorySegment(
                role=turn.role,
                content=turn.text,
                pinned=self.is_pinned("short_term"),
                category="short_term",
            ))

        compacted = compact_segments(
            segments,
            budget,
            min_segments=self.config.min_segments,
            length=self.length,
        )
        logger.debug(
            f"Assembled {len(compacted)}/{len(segments)} segment(s) for {scope} (budget {budget})"
        )
        return compacted

    async def _analyze(self, scope: MemoryScope, turns: list[ConversationTurn]) -> DerivedAnalysis:
        key = make_key("analysis", str(scope), *(f"{t.role}:{t.text}" for t in turns))
        cached = self.analysis_cache.get(key)
        if cached is not None:
            return cached
        analysis = await self.analyzer.analyze(turns)
        if not analysis.is_empty():
            self.analysis_cache.set(key, analysis)
        return analysis

    @staticmethod
    def to_messages(segments: list[MemorySegment]) -> list[dict[str, str]]:
        return [s.to_message() for s in segments]
