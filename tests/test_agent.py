"""End-to-end routing tests for ChatAgent with fake collaborators."""

import logging
import random

import pytest

from conftest import FakeEmbedder, FakePageSource, MockLLMProvider, long_text

from grounded_agent.agent import (
    APOLOGY,
    COULD_NOT_RETRIEVE,
    HELP_TEXT,
    NO_SEARCH_RESULTS,
    NOT_IN_RESULTS,
    NOT_IN_SOURCE,
    build_agent,
)
from grounded_agent.config import load_config
from grounded_agent.search.base import SearchProvider
from grounded_agent.storage.sqlite import SQLiteMemoryStore
from grounded_agent.types import (
    ChatEvent,
    LLMProviderError,
    MemoryScope,
    QuotaRecord,
    RollingSummary,
    SearchResult,
    UNAVAILABLE_SENTINEL,
)


class FakeSearch(SearchProvider):
    name = "fake"

    def __init__(self, results=None, configured=True):
        self.results = results or []
        self.configured = configured
        self.queries: list[str] = []

    async def search(self, query, max_results=3):
        self.queries.append(query)
        return self.results[:max_results]

    def is_configured(self):
        return self.configured


@pytest.fixture
def store(tmp_sqlite_db):
    s = SQLiteMemoryStore(tmp_sqlite_db)
    yield s
    s.close()


@pytest.fixture
def pages():
    return FakePageSource({
        "https://example.com/guide": (long_text("guide"), ["https://example.com/guide/more"]),
        "https://example.com/guide/more": (long_text("details"), []),
        "https://ramen.example/best": (long_text("noodles"), []),
    })


def _agent(store, pages, llm, search=None, **config_overrides):
    raw = {
        "assembly": {"analysis_enabled": False},
        "intervention": {"model_judge": False, "level": 0},
        "memory": {"affinity_enabled": False},
    }
    raw.update(config_overrides)
    return build_agent(
        load_config(config_dict=raw),
        llm=llm,
        embedder=FakeEmbedder(),
        search=search or FakeSearch(configured=False),
        store=store,
        fetcher=pages,
        rng=random.Random(0),
    )


def _event(text, author="alice", **kw):
    return ChatEvent(author_id=author, channel_id="c1", thread_id="t1", text=text, **kw)


class TestHelp:
    @pytest.mark.asyncio
    async def test_help_needs_no_model(self, store, pages):
        llm = MockLLMProvider()
        reply = await _agent(store, pages, llm).handle_event(_event("what can you do"))
        assert reply.path == "help"
        assert reply.text == HELP_TEXT
        assert llm.calls == []


class TestCrawlPath:
    @pytest.mark.asyncio
    async def test_grounded_summary(self, store, pages):
        llm = MockLLMProvider(["The guide covers setup."])
        agent = _agent(store, pages, llm)
        reply = await agent.handle_event(_event("what does https://example.com/guide cover?"))

        assert reply.path == "crawl"
        assert reply.text == "The guide covers setup."
        assert pages.calls == ["https://example.com/guide", "https://example.com/guide/more"]
        system = llm.calls[0]["messages"][0]["content"]
        assert "guide guide" in system and "details details" in system
        assert llm.calls[0]["messages"][1]["content"] == "what does cover?"

    @pytest.mark.asyncio
    async def test_sentinel_becomes_not_in_source(self, store, pages):
        llm = MockLLMProvider([UNAVAILABLE_SENTINEL])
        reply = await _agent(store, pages, llm).handle_event(_event("price? https://example.com/guide"))
        assert reply.text == NOT_IN_SOURCE

    @pytest.mark.asyncio
    async def test_unreachable_page(self, store, pages):
        llm = MockLLMProvider()
        reply = await _agent(store, pages, llm).handle_event(_event("https://nowhere.example/"))
        assert reply.text == COULD_NOT_RETRIEVE
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_quota_persisted_and_enforced(self, store, pages):
        agent = _agent(store, pages, MockLLMProvider(["ok"]))
        await agent.handle_event(_event("https://example.com/guide"))
        assert store.get_quota_record("alice").count == 2

        store.save_quota_record(QuotaRecord("bob", agent.quota.today(), 5))
        pages.calls.clear()
        reply = await agent.handle_event(_event("https://example.com/guide", author="bob"))
        assert reply.text == COULD_NOT_RETRIEVE
        assert pages.calls == []

    @pytest.mark.asyncio
    async def test_exchange_recorded(self, store, pages):
        agent = _agent(store, pages, MockLLMProvider(["Setup steps."]))
        await agent.handle_event(_event("https://example.com/guide", group_id="g1"))
        turns = store.get_turns(MemoryScope.thread("alice", "t1"))
        assert [t.text for t in turns] == ["https://example.com/guide", "Setup steps."]
        assert store.count_turns(MemoryScope.group("g1")) == 2


class TestSearchPath:
    @pytest.mark.asyncio
    async def test_search_summary_with_sources(self, store, pages):
        search = FakeSearch([
            SearchResult(title="Best Ramen", url="https://ramen.example/best", snippet="short"),
            SearchResult(title="Forum", url="https://forum.example/t/1", snippet="people like ramen"),
        ])
        llm = MockLLMProvider(["Try the noodle bar."])
        reply = await _agent(store, pages, llm, search=search).handle_event(_event("?? best ramen in town"))

        assert reply.path == "search"
        assert reply.text.startswith("Try the noodle bar.")
        assert "- Best Ramen: https://ramen.example/best" in reply.text
        assert search.queries == ["best ramen in town"]
        system = llm.calls[0]["messages"][0]["content"]
        assert "Source: Best Ramen (https://ramen.example/best)" in system
        assert "people like ramen" in system

    @pytest.mark.asyncio
    async def test_no_results(self, store, pages):
        reply = await _agent(store, pages, MockLLMProvider(), search=FakeSearch([])).handle_event(
            _event("search for unicorn ramen"),
        )
        assert reply.text == NO_SEARCH_RESULTS

    @pytest.mark.asyncio
    async def test_results_without_answer(self, store, pages):
        search = FakeSearch([SearchResult(title="Best Ramen", url="https://ramen.example/best", snippet="")])
        llm = MockLLMProvider([UNAVAILABLE_SENTINEL])
        reply = await _agent(store, pages, llm, search=search).handle_event(_event("?? ramen opening hours"))
        assert reply.text == NOT_IN_RESULTS

    @pytest.mark.asyncio
    async def test_unconfigured_search_falls_back_to_chat(self, store, pages):
        llm = MockLLMProvider(["I can't search right now, but..."])
        reply = await _agent(store, pages, llm).handle_event(_event("?? ramen"))
        assert reply.path == "chat"


class TestChatPath:
    @pytest.mark.asyncio
    async def test_chat_uses_history(self, store, pages):
        llm = MockLLMProvider(["Nice to meet you, Alice.", "You said your name is Alice."])
        agent = _agent(store, pages, llm, agent_name="Guide")
        first = await agent.handle_event(_event("hi, I'm Alice"))
        second = await agent.handle_event(_event("what's my name?"))

        assert first.path == second.path == "chat"
        assert second.text == "You said your name is Alice."
        messages = llm.calls[1]["messages"]
        assert "You are Guide" in messages[0]["content"]
        contents = [m["content"] for m in messages]
        assert "hi, I'm Alice" in contents
        assert "Nice to meet you, Alice." in contents
        assert messages[-1] == {"role": "user", "content": "what's my name?"}
        assert llm.calls[1]["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_failure_returns_apology_and_logs(self, store, pages, caplog):
        llm = MockLLMProvider(error=LLMProviderError("down", provider="fake"))
        with caplog.at_level(logging.ERROR, logger="grounded_agent.agent"):
            reply = await _agent(store, pages, llm).handle_event(_event("hello"))
        assert reply.path == "error"
        assert reply.text == APOLOGY
        assert "channel=c1" in caplog.text
        assert store.count_turns(MemoryScope.thread("alice", "t1")) == 0


    @pytest.mark.asyncio
    async def test_profile_learned_and_used(self, store, pages):
        llm = MockLLMProvider([
            "Happy to help!",
            "positive",
            '{"summary": "Travels by train a lot.", "preferences": {"seat": "window"}}',
            "Window seats are on the left.",
        ])
        agent = _agent(
            store, pages, llm,
            memory={"affinity_enabled": True, "profile_refresh_exchanges": 1},
        )
        await agent.handle_event(_event("thanks, I love train trips", group_id="g1"))

        profile = store.get_profile("alice", "g1")
        assert profile.profile_summary == "Travels by train a lot."
        assert profile.affinity == pytest.approx(0.2)
        assert llm.calls[1]["messages"][1]["content"] == "thanks, I love train trips"

        await agent.handle_event(_event("which seat should I book?", group_id="g1"))
        system_notes = [m["content"] for m in llm.calls[3]["messages"] if m["role"] == "system"]
        assert any("About this user: Travels by train a lot." in n for n in system_notes)
        assert any("seat: window" in n for n in system_notes)

class TestBotConversations:
    @pytest.mark.asyncio
    async def test_bot_turn_limit_and_human_reset(self, store, pages):
        agent = _agent(store, pages, MockLLMProvider(["beep"]))
        bot = dict(author="helper-bot", is_bot_author=True)

        assert (await agent.handle_event(_event("ping", **bot))).path == "chat"
        assert (await agent.handle_event(_event("ping", **bot))).path == "chat"
        assert (await agent.handle_event(_event("ping", **bot))).path == "declined"

        await agent.handle_event(_event("hello everyone"))
        assert (await agent.handle_event(_event("ping", **bot))).path == "chat"


class TestConsider:
    @pytest.mark.asyncio
    async def test_declines_without_signal(self, store, pages):
        llm = MockLLMProvider()
        decision, reply = await _agent(store, pages, llm).consider(_event("nice weather"))
        assert not decision.intervene
        assert reply.path == "declined"
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_mention_replies(self, store, pages):
        llm = MockLLMProvider(["Hi!"])
        decision, reply = await _agent(store, pages, llm).consider(_event("hello", mentions_agent=True))
        assert decision.source == "explicit"
        assert reply.text == "Hi!"

    @pytest.mark.asyncio
    async def test_judge_sees_assembled_context(self, store, pages):
        store.save_summary(
            MemoryScope.thread("alice", "t1"),
            RollingSummary(summary="Alice is planning a trip to Kyoto."),
        )
        llm = MockLLMProvider(["no"])
        agent = _agent(store, pages, llm, intervention={"model_judge": True, "level": 0})
        decision, reply = await agent.consider(_event("which train is fastest?"))

        assert not decision.intervene
        assert reply.path == "declined"
        assert len(llm.calls) == 1
        prompt = llm.calls[0]["messages"][1]["content"]
        assert "Context notes:\nAlice is planning a trip to Kyoto." in prompt
