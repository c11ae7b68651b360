"""OpenAI-compatible completion and embedding providers via httpx.

Works with OpenAI, Ollama, vLLM, LM Studio, or any server exposing
/v1/chat/completions and /v1/embeddings.
"""

from __future__ import annotations

import httpx

from ..types import LLMProviderError
from .base import BaseProvider


class OpenAICompatProvider(BaseProvider):
    """Completion service over an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4.1-nano",
        api_key: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(timeout=timeout, transport=transport)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key or "not-needed"

    def _provider_name(self) -> str:
        return "openai_compat"

    def _get_headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.7,
        max_tokens: int = 512,
        top_p: float | None = None,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if top_p is not None:
            payload["top_p"] = top_p
        data = await self._post_json(f"{self.base_url}/chat/completions", payload)
        choices = data.get("choices", [])
        if choices:
            return (choices[0].get("message", {}) or {}).get("content", "") or ""
        return ""


class OpenAICompatEmbedder(BaseProvider):
    """Embedding service over an OpenAI-compatible embeddings API."""

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(timeout=timeout, transport=transport)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key or "not-needed"

    def _provider_name(self) -> str:
        return "openai_compat_embeddings"

    def _get_headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def embed(self, text: str) -> list[float]:
        data = await self._post_json(
            f"{self.base_url}/embeddings",
            {"model": self.model, "input": text},
        )
        items = data.get("data", [])
        if not items or "embedding" not in items[0]:
            raise LLMProviderError("Embedding response missing data", provider=self._provider_name())
        return [float(x) for x in items[0]["embedding"]]
