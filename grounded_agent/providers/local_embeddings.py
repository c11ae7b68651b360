"""Local embeddings via sentence-transformers (optional extra)."""

from __future__ import annotations

import asyncio
import logging
import threading

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder:
    """Embedding service backed by a locally loaded sentence-transformers model.

    The model is loaded on first use. Requires ``grounded-agent[embeddings]``.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2") -> None:
        self.model_name = model_name
        self._model = None
        self._load_lock = threading.Lock()

    def _get_model(self):
        with self._load_lock:
            if self._model is None:
                try:
                    from sentence_transformers import SentenceTransformer
                except ImportError:
                    raise ImportError(
                        "sentence-transformers not installed. "
                        "Install with: pip install grounded-agent[embeddings]"
                    )
                logger.info(f"Loading embedding model {self.model_name}")
                self._model = SentenceTransformer(self.model_name)
            return self._model

    def _encode(self, text: str) -> list[float]:
        model = self._get_model()
        return model.encode([text], convert_to_numpy=True, show_progress_bar=False)[0].tolist()

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._encode, text)
