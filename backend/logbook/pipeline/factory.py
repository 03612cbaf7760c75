"""
Pipeline Factory

Wires the concrete capabilities from settings. Workers only call
``build_orchestrator()``; nothing else constructs LLM, embedding, storage
or search clients for the pipeline.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from logbook.capabilities.base import PipelineCapabilities
from logbook.capabilities.categorization import LLMCategorizer
from logbook.capabilities.embeddings import OpenAIEmbedder, get_embedding_model
from logbook.capabilities.entities import LLMEntityExtractor
from logbook.capabilities.extraction import DocumentTextExtractor
from logbook.capabilities.llm import get_chat_model
from logbook.capabilities.pii import LLMPIIScrubber
from logbook.capabilities.search_index import MeilisearchIndexer
from logbook.core.config import settings
from logbook.pipeline.orchestrator import PipelineOrchestrator
from logbook.pipeline.repository import SqlPipelineRepository
from logbook.processing.chunking import ParagraphChunker
from logbook.storage.s3 import DocumentStorage


def get_search_indexer() -> MeilisearchIndexer:
    return MeilisearchIndexer(
        host=settings.meilisearch_host,
        api_key=settings.meilisearch_api_key,
        index=settings.meilisearch_index,
    )


def build_capabilities(
    session_factory: async_sessionmaker[AsyncSession],
    storage:         DocumentStorage | None = None,
) -> PipelineCapabilities:
    llm = get_chat_model()
    return PipelineCapabilities(
        extractor=DocumentTextExtractor(
            storage=storage or DocumentStorage(),
            api_url=settings.unstructured_api_url,
            api_key=settings.unstructured_api_key,
            timeout=settings.unstructured_timeout,
        ),
        pii_scrubber=LLMPIIScrubber(llm),
        categorizer=LLMCategorizer(session_factory, llm),
        embedder=OpenAIEmbedder(get_embedding_model(), batch_size=settings.embedding_batch_size),
        indexer=get_search_indexer(),
        entity_extractor=LLMEntityExtractor(session_factory, llm),
    )


def build_orchestrator(session_factory: async_sessionmaker[AsyncSession]) -> PipelineOrchestrator:
    """Return an orchestrator bound to ``session_factory`` (one per worker task)."""
    return PipelineOrchestrator(
        repository=SqlPipelineRepository(session_factory),
        capabilities=build_capabilities(session_factory),
        chunker=ParagraphChunker(settings.chunk_size, settings.chunk_overlap),
        confidence_threshold=settings.confidence_threshold,
    )
