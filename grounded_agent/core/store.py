"""MemoryStore abstract base class: persistence interface for conversation memory."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..types import ConversationTurn, MemoryScope, QuotaRecord, RecalledInteraction, RollingSummary, UserProfile


class MemoryStore(ABC):
    """Pluggable storage backend for turns, rolling summaries, and recall embeddings.

    Methods are synchronous; async callers run them through ``asyncio.to_thread``.
    """

    @abstractmethod
    def append_turn(self, scope: MemoryScope, turn: ConversationTurn) -> None:
        """Append a turn. Duplicates are allowed."""

    @abstractmethod
    def get_turns(self, scope: MemoryScope, limit: int | None = None) -> list[ConversationTurn]:
        """Turns in insertion order. With ``limit``, only the most recent ``limit``."""

    @abstractmethod
    def get_turns_range(self, scope: MemoryScope, start: int, end: int) -> list[ConversationTurn]:
        """Turns ``start`` (inclusive) to ``end`` (exclusive) by insertion position."""

    @abstractmethod
    def count_turns(self, scope: MemoryScope) -> int:
        """Number of turns stored for the scope."""

    @abstractmethod
    def save_summary(self, scope: MemoryScope, summary: RollingSummary) -> None:
        """Replace the rolling summary for the scope."""

    @abstractmethod
    def get_summary(self, scope: MemoryScope) -> RollingSummary | None:
        """Rolling summary for the scope, or None."""

    @abstractmethod
    def store_interaction(
        self,
        identity: str,
        user_text: str,
        assistant_text: str,
        embedding: list[float],
        group_id: str | None = None,
    ) -> None:
        """Store one user/assistant exchange with the embedding of its user text."""

    @abstractmethod
    def search_interactions(
        self,
        identity: str,
        embedding: list[float],
        limit: int = 2,
        threshold: float = 0.0,
        group_id: str | None = None,
    ) -> list[RecalledInteraction]:
        """Nearest stored exchanges for the identity (and group, if given), best first."""

    @abstractmethod
    def save_quota_record(self, record: QuotaRecord) -> None:
        """Persist the latest quota record for an identity."""

    @abstractmethod
    def get_quota_record(self, identity: str) -> QuotaRecord | None:
        """Latest stored quota record, which may be from an earlier day."""

    @abstractmethod
    def save_profile(self, profile: UserProfile) -> None:
        """Replace the profile stored for ``(identity, group_id)``."""

    @abstractmethod
    def get_profile(self, identity: str, group_id: str | None = None) -> UserProfile | None:
        """Profile for the identity within the group (no group when None), or None."""

    def close(self) -> None:
        """Release resources. No-op by default."""
