"""Intent detection: one dispatch over the declarative table in patterns.py."""

from __future__ import annotations

import re
from datetime import date
from functools import lru_cache

from ..patterns import INTENT_PATTERNS, LOOKUP_CATEGORIES, URL_PATTERN

_URL_RE = re.compile(URL_PATTERN)
_TRAILING_PUNCT = ".,;:!?)]}'\""


@lru_cache(maxsize=1)
def _compiled() -> tuple[tuple[re.Pattern[str], str], ...]:
    return tuple((re.compile(p, re.IGNORECASE), cat) for p, cat in INTENT_PATTERNS)


def detect_intents(text: str) -> set[str]:
    """Return every category whose pattern matches ``text``."""
    if not text:
        return set()
    return {cat for pattern, cat in _compiled() if pattern.search(text)}


def extract_urls(text: str) -> list[str]:
    """Extract http(s) URLs in order of appearance, deduplicated."""
    seen: list[str] = []
    for match in _URL_RE.findall(text or ""):
        url = match.rstrip(_TRAILING_PUNCT)
        if url and url not in seen:
            seen.append(url)
    return seen


def needs_lookup(intents: set[str]) -> bool:
    return bool(intents & LOOKUP_CATEGORIES)


def build_search_query(text: str, intents: set[str], today: date) -> str:
    """Turn a chat message into a search query.

    Strips URLs and the ``??`` prefix; appends the current date for recency
    requests so the engine favours fresh results.
    """
    query = _URL_RE.sub(" ", text)
    query = re.sub(r"^\s*\?\?\s*", "", query)
    query = " ".join(query.split())
    if "recency" in intents:
        stamp = today.isoformat()
        if stamp not in query:
            query = f"{query} {stamp}".strip()
    if "news" in intents and not re.search(r"\bnews\b", query, re.IGNORECASE):
        query = f"{query} news".strip()
    return query
