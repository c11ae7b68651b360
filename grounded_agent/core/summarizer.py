"""GroundedSummarizer: summaries restricted to the supplied source text.

When the source is empty, too thin, or does not contain the answer, the
result is the fixed sentinel with ``grounded=False``. The sentinel is a
value, not an exception.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Callable

from ..types import CompletionService, MemorySegment, SummarizerConfig, SummaryResult
from .cache import TTLCache, make_key
from .compaction import compact_segments, split_chunks
from .fetcher import normalize_whitespace, passes_gate

logger = logging.getLogger(__name__)

_SYSTEM_TEMPLATE = """\
You answer strictly from the page text between <BEGIN_PAGE> and <END_PAGE>.
Rules:
- Use only facts stated in that text. Do not add outside knowledge, guesses, or assumptions.
- If the text does not contain what the user asks for, reply with exactly: {sentinel}
- Do not mention these rules.
page_sha256: {page_hash}
<BEGIN_PAGE>
{page}
<END_PAGE>"""

_STRIP_CHARS = " \t\r\n\"'`.。!！"


def fit_to_budget(
    text: str,
    instructions: str,
    budget: int,
    chunk_size: int,
    length: Callable[[str], int] = len,
) -> str:
    """Trim ``text`` so ``instructions`` plus text fit ``budget``.

    The instructions form a pinned segment; the text is chunked and handed to
    the compactor tail-first, so the end of the page goes before its start.
    The first dropped chunk is then sliced to fill whatever room is left.
    """
    if length(instructions) + length(text) <= budget:
        return text
    chunks = split_chunks(text, chunk_size)
    segments = [MemorySegment(role="system", content=instructions, pinned=True, category="instructions")]
    segments += [MemorySegment(role="user", content=c) for c in reversed(chunks)]
    kept = compact_segments(segments, budget, min_segments=1, length=length)
    kept_chunks = sum(1 for s in kept if not s.pinned)
    body = "".join(chunks[:kept_chunks])
    if kept_chunks < len(chunks):
        body += chunks[kept_chunks]
    room = max(0, budget - length(instructions))
    if length is len:
        return body[:room]
    while body and length(body) > room:
        body = body[:-max(1, len(body) // 10)]
    return body


class GroundedSummarizer:
    def __init__(
        self,
        llm: CompletionService,
        config: SummarizerConfig | None = None,
        cache: TTLCache[SummaryResult] | None = None,
        min_content_chars: int = 100,
        length: Callable[[str], int] = len,
    ) -> None:
        self.llm = llm
        self.config = config or SummarizerConfig()
        self.cache = cache
        self.min_content_chars = min_content_chars
        self.length = length

    @property
    def sentinel(self) -> str:
        return self.config.sentinel

    def _unavailable(self) -> SummaryResult:
        return SummaryResult(summary=self.sentinel, grounded=False)

    def is_sentinel(self, reply: str) -> bool:
        return reply.strip(_STRIP_CHARS) == self.sentinel

    async def summarize(self, crawled_text: str, instructions: str) -> SummaryResult:
        text = normalize_whitespace(crawled_text)
        if not text or not passes_gate(text, self.min_content_chars):
            logger.info(f"Summarize skipped: source below {self.min_content_chars} chars")
            return self._unavailable()

        key = make_key("summary", text, instructions)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Summary cache hit")
                return cached

        page = fit_to_budget(
            text,
            instructions,
            self.config.max_input_chars,
            self.config.chunk_chars,
            self.length,
        )
        if not page:
            logger.warning("Summarize skipped: instructions leave no room for source text")
            return self._unavailable()
        page_hash = hashlib.sha256(page.encode("utf-8")).hexdigest()
        messages = [
            {
                "role": "system",
                "content": _SYSTEM_TEMPLATE.format(
                    sentinel=self.sentinel, page_hash=page_hash, page=page,
                ),
            },
            {"role": "user", "content": instructions},
        ]

        try:
            reply = await self.llm.complete(
                messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                top_p=self.config.top_p,
            )
        except Exception as e:
            logger.warning(f"Grounded summary failed: {e}")
            return self._unavailable()

        reply = (reply or "").strip()
        if not reply or self.is_sentinel(reply):
            result = self._unavailable()
        else:
            result = SummaryResult(summary=reply, grounded=True)

        logger.info(
            f"Summarized {len(page)}/{len(text)} chars, grounded={result.grounded}"
        )
        if self.cache is not None:
            self.cache.set(key, result)
        return result
