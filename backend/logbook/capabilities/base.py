"""
Capability interfaces used by the processing pipeline.

Each external service the pipeline depends on sits behind one of these
abstract base classes. The orchestrator receives concrete instances through
``PipelineCapabilities``; it never constructs clients itself.

  TextExtractor     file reference + MIME type → plain text
  PIIScrubber       text → redacted text
  Categorizer       text → summary, confidence, inferred date (links categories)
  Embedder          texts → vectors, same order
  SearchIndexer     upsert / remove a document in the full-text index
  EntityExtractor   text → entities and relations in the knowledge graph
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Sequence


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ExtractionError(Exception):
    """Raised when no usable text can be obtained from a document."""


# ---------------------------------------------------------------------------
# Result / payload types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CategoryLink:
    category_id: uuid.UUID
    confidence:  float
    is_primary:  bool = False


@dataclass(frozen=True)
class CategorizationResult:
    summary:        str | None
    confidence:     float
    extracted_date: date | None = None
    category_links: list[CategoryLink] = field(default_factory=list)


@dataclass(frozen=True)
class EntityExtractionResult:
    entities_created:  int = 0
    relations_created: int = 0


@dataclass(frozen=True)
class IndexPayload:
    """What the search index stores for one document."""
    title:         str
    content:       str
    privacy_level: str
    doc_type:      str | None
    doc_date:      date | None
    uploaded_by:   str | None
    created_at:    datetime | None


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class TextExtractor(ABC):

    @abstractmethod
    async def extract_text(self, file_url: str, mime_type: str) -> str:
        """Return the document's text; raise ``ExtractionError`` on failure."""
        ...


class PIIScrubber(ABC):

    @abstractmethod
    async def scrub(self, text: str) -> str:
        ...


class Categorizer(ABC):

    @abstractmethod
    async def categorize(self, text: str, document_id: uuid.UUID) -> CategorizationResult:
        """Classify the document and persist its category links."""
        ...


class Embedder(ABC):

    @abstractmethod
    async def generate_embeddings(self, texts: Sequence[str]) -> list[list[float]]:
        ...


class SearchIndexer(ABC):

    @abstractmethod
    async def index_document(self, document_id: uuid.UUID, payload: IndexPayload) -> None:
        ...

    @abstractmethod
    async def remove_document(self, document_id: uuid.UUID) -> None:
        ...


class EntityExtractor(ABC):

    @abstractmethod
    async def extract_entities(self, text: str, document_id: uuid.UUID) -> EntityExtractionResult:
        ...


# ---------------------------------------------------------------------------
# Bundle injected into the orchestrator
# ---------------------------------------------------------------------------

@dataclass
class PipelineCapabilities:
    extractor:        TextExtractor
    pii_scrubber:     PIIScrubber
    categorizer:      Categorizer
    embedder:         Embedder
    indexer:          SearchIndexer
    entity_extractor: EntityExtractor
