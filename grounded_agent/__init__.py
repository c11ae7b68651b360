"""grounded-agent: chat answers grounded in crawled web content, with bounded conversational memory."""

from .agent import ChatAgent, build_agent
from .config import load_config
from .types import (
    UNAVAILABLE_SENTINEL,
    AgentConfig,
    AgentReply,
    ChatEvent,
    CrawlBudget,
    GroundedAgentError,
    CrawlNode,
    MemorySegment,
    SummaryResult,
)

__version__ = "0.1.0"

__all__ = [
    "ChatAgent",
    "build_agent",
    "load_config",
    "UNAVAILABLE_SENTINEL",
    "AgentConfig",
    "AgentReply",
    "ChatEvent",
    "CrawlBudget",
    "GroundedAgentError",
    "CrawlNode",
    "MemorySegment",
    "SummaryResult",
]
