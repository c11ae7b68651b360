"""Shared fixtures and fakes for grounded-agent tests."""

from __future__ import annotations

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from grounded_agent.config import load_config
from grounded_agent.types import AgentConfig, ConversationTurn, FetchedPage


class MockLLMProvider:
    """Completion service fake: canned responses in order, records every call."""

    def __init__(self, responses: list[str] | None = None, error: Exception | None = None):
        self.responses = list(responses or ["ok"])
        self.error = error
        self.calls: list[dict] = []

    async def complete(self, messages, *, temperature=0.7, max_tokens=512, top_p=None) -> str:
        self.calls.append({
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": top_p,
        })
        if self.error is not None:
            raise self.error
        idx = min(len(self.calls) - 1, len(self.responses) - 1)
        return self.responses[idx]


class FakeEmbedder:
    """Deterministic embeddings: fixed vectors for known texts, a letter histogram otherwise."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, error: Exception | None = None):
        self.vectors = vectors or {}
        self.error = error
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if text in self.vectors:
            return self.vectors[text]
        vec = [0.0] * 26
        for ch in text.lower():
            if "a" <= ch <= "z":
                vec[ord(ch) - ord("a")] += 1.0
        return vec


class FakePageSource:
    """Page fetcher fake backed by a URL -> (text, links) map. Records fetch calls."""

    def __init__(self, pages: dict[str, tuple[str, list[str]]] | None = None):
        self.pages = pages or {}
        self.calls: list[str] = []
        self.failing: set[str] = set()

    async def fetch_page(self, url: str) -> FetchedPage:
        self.calls.append(url)
        if url in self.failing:
            raise RuntimeError(f"boom: {url}")
        text, links = self.pages.get(url, ("", []))
        return FetchedPage(url=url, text=text, links=list(links), stage="static" if text else "")

    async def fetch(self, url: str) -> str:
        return (await self.fetch_page(url)).text


class FakeRenderer:
    def __init__(self, html: str = "", error: Exception | None = None):
        self.html = html
        self.error = error
        self.calls: list[str] = []

    async def render(self, url: str) -> str:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.html


class ManualClock:
    """Monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class WallClock:
    """Settable UTC wall clock for day-rollover tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def config() -> AgentConfig:
    return load_config(config_dict={})


@pytest.fixture
def ts() -> datetime:
    return datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_store_dir():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def tmp_sqlite_db(tmp_store_dir):
    return tmp_store_dir / "test_store.db"


@pytest.fixture
def sample_turns(ts) -> list[ConversationTurn]:
    return [
        ConversationTurn(role="user", text="Which train goes to the airport?", timestamp=ts),
        ConversationTurn(role="assistant", text="The express from platform 3.", timestamp=ts + timedelta(seconds=20)),
        ConversationTurn(role="user", text="How long does it take?", timestamp=ts + timedelta(minutes=1)),
        ConversationTurn(role="assistant", text="About 35 minutes.", timestamp=ts + timedelta(minutes=1, seconds=20)),
    ]


def long_text(word: str = "content", n: int = 40) -> str:
    """Text comfortably above the 100-char acceptance gate."""
    return " ".join([word] * n)
