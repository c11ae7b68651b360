"""All dataclasses, Protocols, and type aliases for grounded-agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Generic, Literal, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")

UNAVAILABLE_SENTINEL = "INFORMATION_UNAVAILABLE"


# ---------------------------------------------------------------------------
# Crawling
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CrawlNode:
    """One fetched page within a traversal. Never mutated after creation."""
    url: str
    depth: int
    content: str = ""
    outbound_links: tuple[str, ...] = ()


@dataclass(frozen=True)
class CrawlBudget:
    max_depth: int = 2
    max_links_per_page: int = 10
    max_calls_per_request: int = 10
    max_calls_per_day: int = 5


@dataclass
class TraversalState:
    """Mutable state scoped to a single crawl invocation."""
    calls: int = 0
    visited: set[str] = field(default_factory=set)
    stopped: bool = False  # set once a per-request or per-day budget runs out


@dataclass
class FetchedPage:
    url: str
    text: str = ""
    links: list[str] = field(default_factory=list)
    stage: str = ""  # "render", "static", or "" when nothing usable came back


@dataclass
class QuotaRecord:
    identity: str
    date: date
    count: int = 0


@dataclass
class CacheEntry(Generic[T]):
    key: str
    value: T
    expiry: float  # clock value at which the entry stops being served


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConversationTurn:
    role: Literal["user", "assistant"]
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _escape_key_part(part: str) -> str:
    return part.replace("\\", "\\\\").replace(":", "\\:")


@dataclass(frozen=True)
class MemoryScope:
    """Key under which turns and rolling summaries are stored.

    Thread keys join identity and thread id with an unescaped ":"; both
    parts are escaped first so distinct pairs never share a key.
    """
    kind: Literal["thread", "group"]
    key: str

    @classmethod
    def thread(cls, identity: str, thread_id: str) -> MemoryScope:
        return cls(kind="thread", key=f"{_escape_key_part(identity)}:{_escape_key_part(thread_id)}")

    @classmethod
    def group(cls, group_id: str) -> MemoryScope:
        return cls(kind="group", key=group_id)

    def __str__(self) -> str:
        return f"{self.kind}:{self.key}"


@dataclass
class RollingSummary:
    summary: str
    covers_turns: int = 0  # number of leading turns folded into the summary
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class UserProfile:
    """What the agent has learned about one user, per group (empty ``group_id`` outside groups)."""
    identity: str
    group_id: str = ""
    profile_summary: str = ""
    preferences: dict[str, str] = field(default_factory=dict)
    affinity: float = 0.0  # -1.0 distant .. 1.0 close
    exchanges: int = 0
    summarized_at: int = 0  # value of ``exchanges`` when profile_summary was last refreshed
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def relationship(self) -> str:
        if self.affinity > 0.6:
            return "close"
        if self.affinity < -0.4:
            return "distant"
        return "neutral"


@dataclass
class RecalledInteraction:
    user_text: str
    assistant_text: str
    similarity: float = 0.0


@dataclass
class MemorySegment:
    """The assembler's unit of composition."""
    role: Literal["system", "user", "assistant"]
    content: str
    pinned: bool = False
    category: str = ""  # "long_term_summary", "recall", "short_term", "topic", ...

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class DerivedAnalysis:
    topic: str = ""
    unresolved: str = ""
    expectation: str = ""
    tone: str = ""

    def items(self) -> list[tuple[str, str]]:
        """Non-empty (category, text) pairs in a fixed order."""
        pairs = [
            ("topic", self.topic),
            ("unresolved", self.unresolved),
            ("expectation", self.expectation),
            ("tone", self.tone),
        ]
        return [(k, v) for k, v in pairs if v]

    def is_empty(self) -> bool:
        return not self.items()


# ---------------------------------------------------------------------------
# Summaries, search, chat
# ---------------------------------------------------------------------------

@dataclass
class SummaryResult:
    summary: str
    grounded: bool


@dataclass
class SearchResult:
    """A single search result."""
    title: str
    url: str
    snippet: str


@dataclass
class ChatEvent:
    author_id: str
    channel_id: str
    thread_id: str
    text: str
    is_bot_author: bool = False
    group_id: str | None = None
    mentions_agent: bool = False


@dataclass
class InterventionDecision:
    intervene: bool
    reason: str = ""
    source: Literal["explicit", "model", "probability", "cooldown", "none"] = "none"


@dataclass
class AgentReply:
    text: str
    path: Literal["crawl", "search", "chat", "help", "declined", "error"]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GroundedAgentError(Exception):
    """Base class for errors raised by grounded-agent."""


class LLMProviderError(GroundedAgentError):
    def __init__(self, message: str, provider: str, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class StorageError(GroundedAgentError):
    pass


class ConfigError(GroundedAgentError):
    pass


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class CompletionService(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.7,
        max_tokens: int = 512,
        top_p: float | None = None,
    ) -> str: ...


@runtime_checkable
class EmbeddingService(Protocol):
    async def embed(self, text: str) -> list[float]: ...


@runtime_checkable
class Renderer(Protocol):
    """Render-capable page source: returns the post-script HTML of a URL."""

    async def render(self, url: str) -> str: ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _default_profiles() -> dict[str, CrawlBudget]:
    return {
        "standard": CrawlBudget(
            max_depth=2, max_links_per_page=10, max_calls_per_request=10, max_calls_per_day=5,
        ),
        "elevated": CrawlBudget(
            max_depth=4, max_links_per_page=30, max_calls_per_request=30, max_calls_per_day=50,
        ),
    }


@dataclass
class CrawlConfig:
    profiles: dict[str, CrawlBudget] = field(default_factory=_default_profiles)
    elevated_identities: list[str] = field(default_factory=list)
    cache_ttl_minutes: float = 10.0
    cache_max_entries: int = 256

    def budget_for(self, identity: str, elevated: bool = False) -> CrawlBudget:
        if elevated or identity in self.elevated_identities:
            return self.profiles["elevated"]
        return self.profiles["standard"]


@dataclass
class FetchConfig:
    timeout_seconds: float = 10.0
    render_timeout_seconds: float = 20.0
    min_content_chars: int = 100
    render_enabled: bool = True
    user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )


@dataclass
class QuotaConfig:
    timezone: str = "Asia/Tokyo"


@dataclass
class SummarizerConfig:
    max_input_chars: int = 6000
    chunk_chars: int = 500
    temperature: float = 0.0
    top_p: float = 0.1
    max_tokens: int = 800
    sentinel: str = UNAVAILABLE_SENTINEL
    cache_ttl_minutes: float = 10.0
    cache_max_entries: int = 256


DEFAULT_PINNED_CATEGORIES = ["long_term_summary", "topic", "unresolved", "expectation", "tone"]


@dataclass
class AssemblyConfig:
    budget_chars: int = 5000
    min_segments: int = 1
    short_term_turns: int = 8
    recall_limit: int = 2
    recall_threshold: float = 0.75
    pinned_categories: list[str] = field(default_factory=lambda: list(DEFAULT_PINNED_CATEGORIES))
    analysis_enabled: bool = True
    length_counter: str = "chars"  # "chars", "estimate", "tiktoken"


@dataclass
class MemoryConfig:
    summary_trigger_turns: int = 40
    summary_keep_turns: int = 10
    summary_max_tokens: int = 400
    cache_ttl_minutes: float = 10.0
    cache_max_entries: int = 256
    profile_enabled: bool = True
    profile_refresh_exchanges: int = 10
    profile_history_turns: int = 20
    profile_max_tokens: int = 200
    affinity_enabled: bool = True
    affinity_step: float = 0.2


@dataclass
class InterventionConfig:
    level: int = 2  # probability of an unprompted reply is level / 10
    trigger_patterns: list[str] = field(default_factory=lambda: [r"\bgrounded[- ]?agent\b"])
    model_judge: bool = True
    history_turns: int = 10


@dataclass
class LimitsConfig:
    bot_max_turns: int = 2
    bot_max_daily: int = 10
    cooldown_seconds: float = 3600.0


@dataclass
class StorageConfig:
    backend: str = "sqlite"
    sqlite_path: str = ".grounded-agent/store.db"


@dataclass
class ProviderConfig:
    type: str = "openai"  # "openai" (any OpenAI-compatible endpoint) or "sentence-transformers"
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4.1-nano"
    api_key_env: str = "OPENAI_API_KEY"
    timeout_seconds: float = 60.0


@dataclass
class SearchConfig:
    provider: str = "google"
    api_key_env: str = "GOOGLE_API_KEY"
    cse_id_env: str = "GOOGLE_CSE_ID"
    max_results: int = 3
    language: str = ""
    excluded_domains: list[str] = field(default_factory=lambda: [
        "login", "auth", "accounts.google.com", "ad.", "ads.",
        "doubleclick.net", "googlesyndication.com",
    ])
    priority_domains: list[str] = field(default_factory=lambda: [
        ".gov", ".edu", ".go.jp", ".ac.jp", "reuters.com", "apnews.com", "bbc.co.uk", "nhk.or.jp",
    ])


@dataclass
class AgentConfig:
    version: str = "1.0"
    agent_name: str = "grounded-agent"
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    summarizer: SummarizerConfig = field(default_factory=SummarizerConfig)
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    intervention: InterventionConfig = field(default_factory=InterventionConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    completion: ProviderConfig = field(default_factory=ProviderConfig)
    embedding: ProviderConfig = field(default_factory=lambda: ProviderConfig(
        model="text-embedding-3-small",
    ))
    search: SearchConfig = field(default_factory=SearchConfig)
