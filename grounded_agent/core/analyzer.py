"""ConversationAnalyzer: derive topic / unresolved / expectation / tone from recent turns."""

from __future__ import annotations

import json
import logging
import re

from ..types import CompletionService, ConversationTurn, DerivedAnalysis
from .memory import format_turns

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """\
Read the conversation and describe its current state.
Reply with a JSON object only, using these keys (empty string when unknown):
{"topic": "...", "unresolved": "...", "expectation": "...", "tone": "..."}
- topic: what is being discussed right now
- unresolved: the open question the user still wants answered
- expectation: what kind of reply the user expects next
- tone: the mood of the conversation"""

_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def parse_analysis(raw: str) -> DerivedAnalysis:
    """Parse the first ``{...}`` block of ``raw``; empty analysis when unusable."""
    match = _JSON_RE.search(raw or "")
    if not match:
        return DerivedAnalysis()
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return DerivedAnalysis()
    if not isinstance(data, dict):
        return DerivedAnalysis()

    def field(name: str) -> str:
        value = data.get(name, "")
        return value.strip() if isinstance(value, str) else ""

    return DerivedAnalysis(
        topic=field("topic"),
        unresolved=field("unresolved"),
        expectation=field("expectation"),
        tone=field("tone"),
    )


class ConversationAnalyzer:
    def __init__(self, llm: CompletionService, max_tokens: int = 300) -> None:
        self.llm = llm
        self.max_tokens = max_tokens

    async def analyze(self, turns: list[ConversationTurn]) -> DerivedAnalysis:
        if not turns:
            return DerivedAnalysis()
        try:
            raw = await self.llm.complete(
                [
                    {"role": "system", "content": ANALYSIS_PROMPT},
                    {"role": "user", "content": format_turns(turns)},
                ],
                temperature=0.0,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            logger.warning(f"Conversation analysis failed: {e}")
            return DerivedAnalysis()
        analysis = parse_analysis(raw)
        if analysis.is_empty():
            logger.debug("Conversation analysis returned nothing usable")
        return analysis
