from __future__ import annotations

from ..config import resolve_secret
from ..types import EmbeddingService, LLMProviderError, ProviderConfig
from .base import BaseProvider
from .local_embeddings import SentenceTransformerEmbedder
from .openai_compat import OpenAICompatEmbedder, OpenAICompatProvider


def create_completion_provider(config: ProviderConfig) -> OpenAICompatProvider:
    if config.type != "openai":
        raise ValueError(f"Unknown completion provider type: {config.type}")
    return OpenAICompatProvider(
        base_url=config.base_url,
        model=config.model,
        api_key=resolve_secret(config.api_key_env),
        timeout=config.timeout_seconds,
    )


def create_embedding_provider(config: ProviderConfig) -> EmbeddingService:
    if config.type == "sentence-transformers":
        return SentenceTransformerEmbedder(config.model)
    if config.type == "openai":
        return OpenAICompatEmbedder(
            base_url=config.base_url,
            model=config.model,
            api_key=resolve_secret(config.api_key_env),
            timeout=config.timeout_seconds,
        )
    raise ValueError(f"Unknown embedding provider type: {config.type}")


__all__ = [
    "BaseProvider",
    "LLMProviderError",
    "OpenAICompatEmbedder",
    "OpenAICompatProvider",
    "SentenceTransformerEmbedder",
    "create_completion_provider",
    "create_embedding_provider",
]
