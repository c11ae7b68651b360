"""ChatAgent: route one chat event to the crawl, search, or conversation path."""

from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path

from .core.analyzer import ConversationAnalyzer
from .core.assembler import ContextAssembler
from .core.cache import ContentCaches, build_caches
from .core.crawler import BoundedCrawler, combine_content
from .core.fetcher import PageFetcher
from .core.intent import build_search_query, detect_intents, extract_urls, needs_lookup
from .core.intervention import InterventionDecisionEngine
from .core.limiter import BotConversationLimiter, CooldownTracker
from .core.memory import MemoryStoreAdapter
from .core.quota import QuotaLedger
from .core.store import MemoryStore
from .core.summarizer import GroundedSummarizer
from .length_counter import create_length_counter
from .search.base import SearchProvider
from .types import (
    AgentConfig,
    AgentReply,
    ChatEvent,
    CompletionService,
    EmbeddingService,
    InterventionDecision,
    MemoryScope,
    SearchResult,
)

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, something went wrong while handling your message. Please try again in a little while."
COULD_NOT_RETRIEVE = "Sorry, I couldn't retrieve any content from that page."
NOT_IN_SOURCE = "I read the page, but it doesn't contain that information."
NO_SEARCH_RESULTS = "Sorry, I couldn't find any usable sources for that."
NOT_IN_RESULTS = "I checked a few sources, but none of them answer that."
DEFAULT_INSTRUCTIONS = "Summarize the main points of this page."

HELP_TEXT = """\
Here is what I can do:
- Share a link and I'll read the page (and a few pages it links to) and summarize it, using only what the page says.
- Start a message with ?? or ask me to search, and I'll look it up on the web and summarize what I find.
- Otherwise I just chat, remembering our recent conversation and a running summary of older parts."""

SYSTEM_PROMPT = """\
You are {name}, a helpful assistant in a chat community.
Answer concisely. Use the conversation notes and history below as context.
If you are not sure about a fact, say so instead of guessing."""


class ChatAgent:
    def __init__(
        self,
        config: AgentConfig,
        llm: CompletionService,
        memory: MemoryStoreAdapter,
        crawler: BoundedCrawler,
        fetcher: PageFetcher,
        summarizer: GroundedSummarizer,
        assembler: ContextAssembler,
        quota: QuotaLedger,
        intervention: InterventionDecisionEngine,
        bot_limiter: BotConversationLimiter,
        search: SearchProvider | None = None,
        caches: ContentCaches | None = None,
    ) -> None:
        self.config = config
        self.llm = llm
        self.memory = memory
        self.crawler = crawler
        self.fetcher = fetcher
        self.summarizer = summarizer
        self.assembler = assembler
        self.quota = quota
        self.intervention = intervention
        self.bot_limiter = bot_limiter
        self.search = search
        self.caches = caches

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_event(self, event: ChatEvent) -> AgentReply:
        """Produce the reply for a message addressed to the agent.

        Never raises: any failure is logged with its context and turned into
        a single generic apology.
        """
        try:
            if event.is_bot_author:
                if not self.bot_limiter.allow(event.author_id):
                    return AgentReply(text="", path="declined")
            else:
                self.bot_limiter.reset_turns()

            reply = await self._route(event)

            if event.is_bot_author and reply.text:
                self.bot_limiter.record(event.author_id)
            return reply
        except Exception:
            logger.exception(
                f"Failed to handle message from {event.author_id} "
                f"(channel={event.channel_id}, thread={event.thread_id})"
            )
            return AgentReply(text=APOLOGY, path="error")

    async def consider(self, event: ChatEvent) -> tuple[InterventionDecision, AgentReply]:
        """Decide whether to join a conversation, then reply if so."""
        try:
            history = await self.memory.history(event.author_id, event.thread_id, self.config.intervention.history_turns)
        except Exception as e:
            logger.warning(f"History unavailable for intervention check: {e}")
            history = []
        context = None
        if self.intervention.needs_context(event):
            try:
                context = await self.assembler.assemble(
                    event.author_id,
                    event.thread_id,
                    group_id=event.group_id,
                    query=event.text,
                )
            except Exception as e:
                logger.warning(f"Context unavailable for intervention check: {e}")
        decision = await self.intervention.decide(event, history, context=context)
        if not decision.intervene:
            return decision, AgentReply(text="", path="declined")
        return decision, await self.handle_event(event)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _route(self, event: ChatEvent) -> AgentReply:
        text = event.text or ""
        intents = detect_intents(text)
        urls = extract_urls(text)

        if "help" in intents and not urls:
            return AgentReply(text=HELP_TEXT, path="help")
        if urls:
            return await self.answer_from_url(event, urls[0])
        if needs_lookup(intents) and self.search is not None and self.search.is_configured():
            return await self.answer_from_search(event, intents)
        return await self.chat(event)

    def _instructions(self, text: str) -> str:
        stripped = text
        for url in extract_urls(text):
            stripped = stripped.replace(url, " ")
        stripped = " ".join(stripped.split())
        return stripped or DEFAULT_INSTRUCTIONS

    async def _sync_quota(self, identity: str) -> None:
        if self.quota.get_record(identity) is not None:
            return
        try:
            record = await self.memory.load_quota_record(identity)
        except Exception as e:
            logger.warning(f"Stored quota unavailable for {identity}: {e}")
            return
        if record is not None:
            self.quota.load_record(record)

    async def _persist_quota(self, identity: str) -> None:
        record = self.quota.get_record(identity)
        if record is None:
            return
        try:
            await self.memory.save_quota_record(record)
        except Exception as e:
            logger.warning(f"Could not persist quota for {identity}: {e}")

    async def answer_from_url(self, event: ChatEvent, url: str) -> AgentReply:
        identity = event.author_id
        budget = self.config.crawl.budget_for(identity)
        await self._sync_quota(identity)
        nodes = await self.crawler.crawl(url, identity, budget)
        await self._persist_quota(identity)

        source = combine_content(nodes)
        if not source:
            return await self._finish(event, AgentReply(text=COULD_NOT_RETRIEVE, path="crawl"))

        result = await self.summarizer.summarize(source, self._instructions(event.text))
        text = result.summary if result.grounded else NOT_IN_SOURCE
        return await self._finish(event, AgentReply(text=text, path="crawl"))

    async def answer_from_search(self, event: ChatEvent, intents: set[str]) -> AgentReply:
        query = build_search_query(event.text, intents, self.quota.today())
        results = await self.search.search(query, self.config.search.max_results)
        if not results:
            return await self._finish(event, AgentReply(text=NO_SEARCH_RESULTS, path="search"))

        pages = await asyncio.gather(*(self._read_result(r) for r in results))
        source = "\n\n".join(p for p in pages if p)
        result = await self.summarizer.summarize(source, event.text)
        if not result.grounded:
            return await self._finish(event, AgentReply(text=NOT_IN_RESULTS, path="search"))

        sources = "\n".join(f"- {r.title}: {r.url}" for r in results)
        return await self._finish(
            event, AgentReply(text=f"{result.summary}\n\nSources:\n{sources}", path="search"),
        )

    async def _read_result(self, result: SearchResult) -> str:
        try:
            text = await self.fetcher.fetch(result.url)
        except Exception as e:
            logger.warning(f"Fetch failed for search result {result.url}: {e}")
            text = ""
        body = text or result.snippet
        if not body:
            return ""
        return f"Source: {result.title} ({result.url})\n{body}"

    async def chat(self, event: ChatEvent) -> AgentReply:
        segments = await self.assembler.assemble(
            event.author_id,
            event.thread_id,
            group_id=event.group_id,
            query=event.text,
        )
        messages = [{"role": "system", "content": SYSTEM_PROMPT.format(name=self.config.agent_name)}]
        messages += ContextAssembler.to_messages(segments)
        messages.append({"role": "user", "content": event.text})
        text = await self.llm.complete(messages, temperature=0.7, max_tokens=800)
        return await self._finish(event, AgentReply(text=(text or "").strip(), path="chat"))

    async def _finish(self, event: ChatEvent, reply: AgentReply) -> AgentReply:
        """Write the exchange back to memory, then roll summaries and refresh the profile when due."""
        if not reply.text:
            return reply
        await self.memory.record_exchange(
            event.author_id, event.thread_id, event.text, reply.text, event.group_id,
        )
        scopes = [MemoryScope.thread(event.author_id, event.thread_id)]
        if event.group_id:
            scopes.append(MemoryScope.group(event.group_id))
        for scope in scopes:
            await self.memory.maybe_roll_summary(scope)
        memory_config = self.config.memory
        if memory_config.profile_enabled or memory_config.affinity_enabled:
            await self.memory.note_exchange(event.author_id, event.text, event.group_id)
            await self.memory.maybe_update_profile(event.author_id, event.thread_id, event.group_id)
        return reply


def build_agent(
    config: AgentConfig,
    *,
    llm: CompletionService | None = None,
    embedder: EmbeddingService | None = None,
    search: SearchProvider | None = None,
    store: MemoryStore | None = None,
    fetcher: PageFetcher | None = None,
    rng: random.Random | None = None,
) -> ChatAgent:
    """Wire every component from config. Collaborators may be injected."""
    if llm is None:
        from .providers import create_completion_provider
        llm = create_completion_provider(config.completion)
    if embedder is None:
        from .providers import create_embedding_provider
        embedder = create_embedding_provider(config.embedding)
    if store is None:
        from .storage.sqlite import SQLiteMemoryStore
        store = SQLiteMemoryStore(Path(config.storage.sqlite_path))
    if search is None:
        from .search import create_search_provider
        search = create_search_provider(config.search)

    caches = build_caches(config)
    length = create_length_counter(config.assembly.length_counter)
    quota = QuotaLedger(tz=config.quota.timezone)
    fetcher = fetcher or PageFetcher(config.fetch)
    memory = MemoryStoreAdapter(
        store,
        embedder=embedder,
        llm=llm,
        config=config.memory,
        summary_cache=caches.memory,
        embedding_cache=caches.embedding,
    )
    analyzer = ConversationAnalyzer(llm) if config.assembly.analysis_enabled else None
    return ChatAgent(
        config=config,
        llm=llm,
        memory=memory,
        crawler=BoundedCrawler(fetcher, quota, caches.crawl),
        fetcher=fetcher,
        summarizer=GroundedSummarizer(
            llm,
            config.summarizer,
            cache=caches.summary,
            min_content_chars=config.fetch.min_content_chars,
            length=length,
        ),
        assembler=ContextAssembler(
            memory,
            config.assembly,
            analyzer=analyzer,
            length=length,
            analysis_cache=caches.memory,
        ),
        quota=quota,
        intervention=InterventionDecisionEngine(
            llm,
            config.intervention,
            rng=rng,
            cooldowns=CooldownTracker(config.limits.cooldown_seconds),
        ),
        bot_limiter=BotConversationLimiter(
            config.limits.bot_max_turns,
            config.limits.bot_max_daily,
            tz=config.quota.timezone,
        ),
        search=search,
        caches=caches,
    )
