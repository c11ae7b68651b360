"""Injected conversation limiters: per-channel cooldowns and bot-to-bot caps."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from .cache import TTLCache

logger = logging.getLogger(__name__)


class CooldownTracker:
    """Per-key cooldown window, e.g. one unprompted reply per channel per hour."""

    def __init__(
        self,
        cooldown_seconds: float = 3600.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._marks: TTLCache[bool] = TTLCache(
            max_entries=max_entries,
            ttl_seconds=cooldown_seconds,
            clock=clock,
            name="cooldown",
        )

    def is_cooling(self, key: str) -> bool:
        return key in self._marks

    def mark(self, key: str) -> None:
        self._marks.set(key, True)


@dataclass
class _BotState:
    day: date
    turns: int = 0
    daily: int = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BotConversationLimiter:
    """Caps how long the agent keeps talking with another bot.

    ``max_turns`` consecutive replies per bot until a human speaks again, and
    ``max_daily`` replies per bot per day. Day rollover is lazy, as in the
    quota ledger.
    """

    def __init__(
        self,
        max_turns: int = 2,
        max_daily: int = 10,
        tz: str = "Asia/Tokyo",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.max_turns = max_turns
        self.max_daily = max_daily
        self._tz = ZoneInfo(tz)
        self._clock = clock
        self._states: dict[str, _BotState] = {}
        self._lock = threading.Lock()

    def _today(self) -> date:
        return self._clock().astimezone(self._tz).date()

    def _state(self, bot_id: str) -> _BotState:
        today = self._today()
        state = self._states.get(bot_id)
        if state is None or state.day != today:
            state = _BotState(day=today)
            self._states[bot_id] = state
        return state

    def allow(self, bot_id: str) -> bool:
        with self._lock:
            state = self._state(bot_id)
            if state.turns >= self.max_turns:
                logger.info(f"Bot turn limit reached: {bot_id} turns={state.turns}")
                return False
            if state.daily >= self.max_daily:
                logger.info(f"Bot daily limit reached: {bot_id} daily={state.daily}")
                return False
            return True

    def record(self, bot_id: str) -> None:
        with self._lock:
            state = self._state(bot_id)
            state.turns += 1
            state.daily += 1

    def reset_turns(self) -> None:
        """A human spoke: every bot gets a fresh turn allowance (daily caps remain)."""
        with self._lock:
            for state in self._states.values():
                state.turns = 0

    def usage(self, bot_id: str) -> tuple[int, int]:
        with self._lock:
            state = self._state(bot_id)
            return state.turns, state.daily
