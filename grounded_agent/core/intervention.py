"""InterventionDecisionEngine: should the agent speak up without being asked?

Signals are checked in order and the first decisive one wins:
1. explicit trigger: the agent is mentioned or named
2. model judgement: a yes/no question about recent history
3. probability: ``level / 10`` drawn from an injected RNG

Unprompted replies (2 and 3) respect a per-channel cooldown.
"""

from __future__ import annotations

import logging
import random
import re

from ..types import (
    ChatEvent,
    CompletionService,
    ConversationTurn,
    DerivedAnalysis,
    InterventionConfig,
    InterventionDecision,
    MemorySegment,
)
from .limiter import CooldownTracker
from .memory import format_turns

logger = logging.getLogger(__name__)

JUDGE_PROMPT = """\
You decide whether an assistant should join a group chat conversation.
Answer "yes" only if the latest messages contain a question or problem the
assistant could clearly help with, or someone seems to be waiting for an
answer nobody has given. Otherwise answer "no".
Reply with exactly one word: yes or no."""

_YES_RE = re.compile(r"^\W*(yes|はい)\b", re.IGNORECASE)


class InterventionDecisionEngine:
    def __init__(
        self,
        llm: CompletionService | None = None,
        config: InterventionConfig | None = None,
        rng: random.Random | None = None,
        cooldowns: CooldownTracker | None = None,
    ) -> None:
        self.llm = llm
        self.config = config or InterventionConfig()
        self.rng = rng or random.Random()
        self.cooldowns = cooldowns
        self._triggers = [re.compile(p, re.IGNORECASE) for p in self.config.trigger_patterns]

    def is_explicit(self, event: ChatEvent) -> bool:
        if event.mentions_agent:
            return True
        return any(p.search(event.text or "") for p in self._triggers)

    def needs_context(self, event: ChatEvent) -> bool:
        """True when ``decide`` would reach the model judge for this event."""
        if self.is_explicit(event):
            return False
        if self.cooldowns is not None and self.cooldowns.is_cooling(event.channel_id):
            return False
        return self.config.model_judge and self.llm is not None

    @property
    def probability(self) -> float:
        return max(0, min(10, self.config.level)) / 10

    async def decide(
        self,
        event: ChatEvent,
        history: list[ConversationTurn],
        analysis: DerivedAnalysis | None = None,
        context: list[MemorySegment] | None = None,
    ) -> InterventionDecision:
        """Decide for one incoming message. ``context`` is read, never modified."""
        if self.is_explicit(event):
            return InterventionDecision(True, reason="agent addressed directly", source="explicit")

        if self.cooldowns is not None and self.cooldowns.is_cooling(event.channel_id):
            logger.debug(f"Intervention suppressed by cooldown in {event.channel_id}")
            return InterventionDecision(False, reason="channel cooling down", source="cooldown")

        if self.config.model_judge and self.llm is not None:
            if await self._judge(event, history, analysis, context):
                return self._unprompted(event, "model judged the conversation needs help", "model")

        roll = self.rng.random()
        if roll < self.probability:
            return self._unprompted(event, f"random roll {roll:.2f} < {self.probability:.1f}", "probability")
        return InterventionDecision(False, reason="no signal", source="none")

    def _unprompted(self, event: ChatEvent, reason: str, source: str) -> InterventionDecision:
        if self.cooldowns is not None:
            self.cooldowns.mark(event.channel_id)
        logger.info(f"Intervening in {event.channel_id}: {reason}")
        return InterventionDecision(True, reason=reason, source=source)

    async def _judge(
        self,
        event: ChatEvent,
        history: list[ConversationTurn],
        analysis: DerivedAnalysis | None,
        context: list[MemorySegment] | None,
    ) -> bool:
        recent = history[-self.config.history_turns:] if self.config.history_turns > 0 else []
        parts = []
        if analysis is not None and not analysis.is_empty():
            parts.append("\n".join(f"{k}: {v}" for k, v in analysis.items()))
        if context:
            notes = [s.content for s in context if s.role == "system"]
            if notes:
                parts.append("Context notes:\n" + "\n".join(notes))
        parts.append("Recent messages:\n" + (format_turns(recent) or "(none)"))
        parts.append(f"Latest message:\n{event.text}")
        try:
            reply = await self.llm.complete(
                [
                    {"role": "system", "content": JUDGE_PROMPT},
                    {"role": "user", "content": "\n\n".join(parts)},
                ],
                temperature=0.0,
                max_tokens=3,
            )
        except Exception as e:
            logger.warning(f"Intervention judge failed: {e}")
            return False
        return bool(_YES_RE.match(reply or ""))
