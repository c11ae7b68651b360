"""HTTP provider base class with shared async retry logic."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..types import LLMProviderError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BACKOFF = [1.0, 2.0, 4.0]


class BaseProvider(ABC):
    """Abstract base for JSON-over-HTTP providers.

    Subclasses supply the name and headers; ``_post_json()`` owns the retry
    loop: 429 and 5xx responses and transport errors are retried with
    backoff, any other non-200 status raises immediately.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self.last_usage: dict = {}

    @abstractmethod
    def _provider_name(self) -> str: ...

    @abstractmethod
    def _get_headers(self) -> dict: ...

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def _post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        headers = self._get_headers()
        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport,
                ) as client:
                    response = await client.post(url, headers=headers, json=payload)

                if response.status_code == 200:
                    data = response.json()
                    self.last_usage = data.get("usage", {}) or {}
                    return data

                if response.status_code == 429 or response.status_code >= 500:
                    last_error = LLMProviderError(
                        f"HTTP {response.status_code}: {response.text}",
                        provider=self._provider_name(),
                        status_code=response.status_code,
                    )
                    logger.warning(
                        f"{self._provider_name()} returned {response.status_code} "
                        f"(attempt {attempt + 1}/{MAX_RETRIES})"
                    )
                    if attempt < MAX_RETRIES - 1:
                        await self._sleep(RETRY_BACKOFF[attempt])
                    continue

                raise LLMProviderError(
                    f"HTTP {response.status_code}: {response.text}",
                    provider=self._provider_name(),
                    status_code=response.status_code,
                )

            except httpx.HTTPError as e:
                last_error = LLMProviderError(
                    f"HTTP error: {e}",
                    provider=self._provider_name(),
                )
                logger.warning(
                    f"{self._provider_name()} transport error (attempt {attempt + 1}/{MAX_RETRIES}): {e}"
                )
                if attempt < MAX_RETRIES - 1:
                    await self._sleep(RETRY_BACKOFF[attempt])
                continue

        raise last_error or LLMProviderError(
            "Max retries exceeded", provider=self._provider_name()
        )
