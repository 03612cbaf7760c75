"""
Batch embeddings through LangChain's OpenAI integration.

text-embedding-3-small → 1536 dims (default)
Texts are sent in batches of ``batch_size``; output order matches input order.
"""

from __future__ import annotations

import logging
import time
from typing import Sequence

from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings

from logbook.capabilities.base import Embedder
from logbook.core.config import settings

logger = logging.getLogger(__name__)

EMBEDDING_BATCH_SIZE = 100


def get_embedding_model() -> OpenAIEmbeddings:
    return OpenAIEmbeddings(
        model=settings.embedding_model,
        api_key=settings.openai_api_key,
        dimensions=settings.embedding_dimensions,
    )


class OpenAIEmbedder(Embedder):

    def __init__(self, model: Embeddings, batch_size: int = EMBEDDING_BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._model      = model
        self._batch_size = batch_size

    async def generate_embeddings(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []

        start = time.perf_counter()
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), self._batch_size):
            batch = list(texts[offset:offset + self._batch_size])
            vectors.extend(await self._model.aembed_documents(batch))

        logger.info(
            "Embedded | texts=%d batches=%d elapsed_ms=%.1f",
            len(texts),
            (len(texts) + self._batch_size - 1) // self._batch_size,
            (time.perf_counter() - start) * 1000,
        )
        return vectors
