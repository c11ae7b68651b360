"""MemoryStoreAdapter: async facade over a MemoryStore.

Blocking store calls run in a worker thread. Rolling summaries and
embeddings are read through TTL caches; summary writes go through the cache
so a fresh summary is visible immediately.

Each user also has a profile per group: a short model-written summary of
who they are, stated preferences, and an affinity score nudged by the
sentiment of every message they send.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone

from ..types import (
    CompletionService,
    ConversationTurn,
    EmbeddingService,
    MemoryConfig,
    MemoryScope,
    QuotaRecord,
    RecalledInteraction,
    RollingSummary,
    UserProfile,
)
from .cache import TTLCache, make_key
from .store import MemoryStore

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = """\
You maintain a running summary of a conversation.
Merge the previous summary with the new turns into one concise summary.
Keep names, decisions, open questions, and user preferences. Drop small talk.
Reply with the summary text only."""

PROFILE_SYSTEM_PROMPT = """\
You keep a short profile of one chat user.
Update the previous profile using the user's recent messages.
Reply with a JSON object only:
{"summary": "...", "preferences": {"topic": "preference"}}
- summary: the user's traits, interests and habits, under 200 characters
- preferences: likes, dislikes or settings the user stated (may be empty)"""

SENTIMENT_PROMPT = """\
Classify the sentiment of the user's message toward the assistant.
Reply with exactly one word: positive, neutral, or negative."""

PROFILE_SUMMARY_MAX_CHARS = 200

_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)
_SENTIMENT_RE = re.compile(r"^\W*(positive|neutral|negative)\b", re.IGNORECASE)

_NO_SUMMARY = object()


def format_turns(turns: list[ConversationTurn]) -> str:
    return "\n".join(f"{t.role}: {t.text}" for t in turns)


def format_profile(profile: UserProfile) -> str:
    """Prompt text for a profile; empty when there is nothing worth saying."""
    lines = []
    if profile.profile_summary:
        lines.append(f"About this user: {profile.profile_summary}")
    if profile.preferences:
        prefs = ", ".join(f"{k}: {v}" for k, v in sorted(profile.preferences.items()))
        lines.append(f"Preferences: {prefs}")
    if profile.relationship != "neutral":
        lines.append(f"Relationship with this user: {profile.relationship}")
    return "\n".join(lines)


def parse_profile(raw: str) -> tuple[str, dict[str, str]]:
    """Summary and preferences from a profile reply.

    A reply without a usable JSON object is taken as a plain summary.
    """
    text = (raw or "").strip()
    match = _JSON_RE.search(text)
    if not match:
        return text, {}
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return text, {}
    if not isinstance(data, dict):
        return text, {}
    summary = data.get("summary", "")
    summary = summary.strip() if isinstance(summary, str) else ""
    prefs = data.get("preferences", {})
    preferences = {}
    if isinstance(prefs, dict):
        preferences = {str(k): str(v) for k, v in prefs.items() if str(v).strip()}
    return summary, preferences


class MemoryStoreAdapter:
    def __init__(
        self,
        store: MemoryStore,
        embedder: EmbeddingService | None = None,
        llm: CompletionService | None = None,
        config: MemoryConfig | None = None,
        summary_cache: TTLCache | None = None,
        embedding_cache: TTLCache[list[float]] | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.llm = llm
        self.config = config or MemoryConfig()
        self.summary_cache = summary_cache
        self.embedding_cache = embedding_cache

    # -- reads --

    async def get_recent_turns(self, scope: MemoryScope, limit: int) -> list[ConversationTurn]:
        return await asyncio.to_thread(self.store.get_turns, scope, limit)

    async def get_summary(self, scope: MemoryScope) -> RollingSummary | None:
        key = str(scope)
        if self.summary_cache is not None:
            cached = self.summary_cache.get(key, None)
            if cached is not None:
                return None if cached is _NO_SUMMARY else cached
        summary = await asyncio.to_thread(self.store.get_summary, scope)
        if self.summary_cache is not None:
            self.summary_cache.set(key, summary if summary is not None else _NO_SUMMARY)
        return summary

    async def embed(self, text: str) -> list[float]:
        if self.embedder is None:
            return []
        key = make_key("embedding", text)
        if self.embedding_cache is not None:
            cached = self.embedding_cache.get(key)
            if cached is not None:
                return cached
        vec = await self.embedder.embed(text)
        if self.embedding_cache is not None and vec:
            self.embedding_cache.set(key, vec)
        return vec

    async def recall(
        self,
        identity: str,
        query: str,
        limit: int,
        threshold: float,
        group_id: str | None = None,
    ) -> list[RecalledInteraction]:
        """Stored exchanges most similar to ``query``. Empty without an embedder."""
        if self.embedder is None or limit <= 0 or not query.strip():
            return []
        vec = await self.embed(query)
        if not vec:
            return []
        return await asyncio.to_thread(
            self.store.search_interactions, identity, vec, limit, threshold, group_id,
        )

    async def history(self, identity: str, thread_id: str, limit: int | None = None) -> list[ConversationTurn]:
        return await asyncio.to_thread(
            self.store.get_turns, MemoryScope.thread(identity, thread_id), limit,
        )

    # -- writes --

    async def record_exchange(
        self,
        identity: str,
        thread_id: str,
        user_text: str,
        assistant_text: str,
        group_id: str | None = None,
    ) -> None:
        """Persist both turns, and the user text's embedding for later recall."""
        scopes = [MemoryScope.thread(identity, thread_id)]
        if group_id:
            scopes.append(MemoryScope.group(group_id))
        user_turn = ConversationTurn(role="user", text=user_text)
        assistant_turn = ConversationTurn(role="assistant", text=assistant_text)
        for scope in scopes:
            await asyncio.to_thread(self.store.append_turn, scope, user_turn)
            await asyncio.to_thread(self.store.append_turn, scope, assistant_turn)

        if self.embedder is None:
            return
        try:
            vec = await self.embed(user_text)
        except Exception as e:
            logger.warning(f"Embedding failed, exchange not indexed for recall: {e}")
            return
        if vec:
            await asyncio.to_thread(
                self.store.store_interaction, identity, user_text, assistant_text, vec, group_id,
            )

    async def save_summary(self, scope: MemoryScope, summary: RollingSummary) -> None:
        await asyncio.to_thread(self.store.save_summary, scope, summary)
        if self.summary_cache is not None:
            self.summary_cache.set(str(scope), summary)

    async def maybe_roll_summary(self, scope: MemoryScope) -> bool:
        """Fold older turns into the rolling summary once enough have piled up.

        Keeps the newest ``summary_keep_turns`` out of the summary. On any
        failure the previous summary stays in place.
        """
        if self.llm is None:
            return False
        count = await asyncio.to_thread(self.store.count_turns, scope)
        previous = await self.get_summary(scope)
        covered = previous.covers_turns if previous else 0
        if count - covered < self.config.summary_trigger_turns:
            return False

        fold_end = count - self.config.summary_keep_turns
        if fold_end <= covered:
            return False
        turns = await asyncio.to_thread(self.store.get_turns_range, scope, covered, fold_end)
        if not turns:
            return False

        user = (
            f"Previous summary:\n{previous.summary if previous else '(none)'}\n\n"
            f"New turns:\n{format_turns(turns)}"
        )
        try:
            text = await self.llm.complete(
                [
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": user},
                ],
                temperature=0.3,
                max_tokens=self.config.summary_max_tokens,
            )
        except Exception as e:
            logger.warning(f"Rolling summary failed for {scope}: {e}")
            return False
        text = (text or "").strip()
        if not text:
            logger.warning(f"Rolling summary for {scope} came back empty")
            return False

        await self.save_summary(scope, RollingSummary(summary=text, covers_turns=fold_end))
        logger.info(f"Rolled {len(turns)} turn(s) into summary for {scope} (covers {fold_end})")
        return True

    # -- user profiles --

    async def get_profile(self, identity: str, group_id: str | None = None) -> UserProfile | None:
        return await asyncio.to_thread(self.store.get_profile, identity, group_id)

    async def save_profile(self, profile: UserProfile) -> None:
        await asyncio.to_thread(self.store.save_profile, profile)

    async def classify_sentiment(self, text: str) -> str:
        """positive, neutral or negative. Neutral on failure or an unknown label."""
        if self.llm is None or not text.strip():
            return "neutral"
        try:
            raw = await self.llm.complete(
                [
                    {"role": "system", "content": SENTIMENT_PROMPT},
                    {"role": "user", "content": text},
                ],
                temperature=0.0,
                max_tokens=3,
            )
        except Exception as e:
            logger.warning(f"Sentiment classification failed: {e}")
            return "neutral"
        match = _SENTIMENT_RE.match(raw or "")
        return match.group(1).lower() if match else "neutral"

    async def note_exchange(self, identity: str, user_text: str, group_id: str | None = None) -> UserProfile:
        """Count one exchange on the user's profile and move affinity by its sentiment."""
        profile = await self.get_profile(identity, group_id)
        if profile is None:
            profile = UserProfile(identity=identity, group_id=group_id or "")
        profile.exchanges += 1
        if self.config.affinity_enabled:
            sentiment = await self.classify_sentiment(user_text)
            step = self.config.affinity_step
            delta = {"positive": step, "negative": -step}.get(sentiment, 0.0)
            profile.affinity = max(-1.0, min(1.0, round(profile.affinity + delta, 6)))
        profile.updated_at = datetime.now(timezone.utc)
        await self.save_profile(profile)
        return profile

    async def maybe_update_profile(self, identity: str, thread_id: str, group_id: str | None = None) -> bool:
        """Refresh the profile summary every ``profile_refresh_exchanges`` exchanges.

        Reads the user's own messages from the thread. The previous profile
        stays in place on any failure.
        """
        if self.llm is None or not self.config.profile_enabled:
            return False
        profile = await self.get_profile(identity, group_id)
        if profile is None or profile.exchanges - profile.summarized_at < self.config.profile_refresh_exchanges:
            return False
        turns = await self.history(identity, thread_id, self.config.profile_history_turns)
        messages = [t.text for t in turns if t.role == "user"]
        if not messages:
            return False

        user = (
            f"Previous profile:\n{profile.profile_summary or '(none)'}\n\n"
            "Recent messages from the user:\n" + "\n".join(f"- {m}" for m in messages)
        )
        try:
            raw = await self.llm.complete(
                [
                    {"role": "system", "content": PROFILE_SYSTEM_PROMPT},
                    {"role": "user", "content": user},
                ],
                temperature=0.3,
                max_tokens=self.config.profile_max_tokens,
            )
        except Exception as e:
            logger.warning(f"Profile update failed for {identity}: {e}")
            return False
        summary, preferences = parse_profile(raw)
        if not summary:
            logger.warning(f"Profile update for {identity} came back empty")
            return False

        profile.profile_summary = summary[:PROFILE_SUMMARY_MAX_CHARS]
        profile.preferences.update(preferences)
        profile.summarized_at = profile.exchanges
        profile.updated_at = datetime.now(timezone.utc)
        await self.save_profile(profile)
        logger.info(f"Updated profile for {identity} (group={group_id or '-'})")
        return True

    # -- quota persistence --

    async def load_quota_record(self, identity: str) -> QuotaRecord | None:
        return await asyncio.to_thread(self.store.get_quota_record, identity)

    async def save_quota_record(self, record: QuotaRecord) -> None:
        await asyncio.to_thread(self.store.save_quota_record, record)

    def close(self) -> None:
        self.store.close()
