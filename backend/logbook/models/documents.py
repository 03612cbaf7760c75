"""
SQLAlchemy ORM Models: Archive Documents, Chunks & Processing Log

Using SQLAlchemy 2.x mapped classes for full async support.

Schema: logbook (set via __table_args__)

Ownership:
  documents ──┬── chunks            (cascade delete, fully regenerated per pass)
              ├── processing_log    (one row per stage attempt)
              ├── document_categories ── categories
              └── entity_mentions   ── entities ── entity_relations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from logbook.core.config import settings


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model: logbook.documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One archived item (upload, email, chat export) and its derived artifacts.

    State machine (processing_status column):
        pending              stored, waiting for a worker
        processing           pipeline running
        completed            pipeline finished (possibly with non-fatal errors)
        failed               extraction failed or the record could not be loaded
        flagged_for_review   categorization confidence below the threshold

    completed / flagged_for_review imply extracted_text is set;
    failed implies processing_error is set.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed', 'flagged_for_review')",
            name="documents_processing_status_check",
        ),
        CheckConstraint(
            "privacy_level IN ('shared', 'private', 'privileged')",
            name="documents_privacy_level_check",
        ),
        CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 1)",
            name="documents_ai_confidence_check",
        ),
        Index("idx_documents_status",     "processing_status"),
        Index("idx_documents_created_at", "created_at"),
        {"schema": "logbook"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )

    uploaded_by: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Uploader identity as supplied by the ingestion channel",
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    original_filename: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Storage reference
    file_url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Object key of the raw file in the documents bucket",
    )
    file_size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    mime_type: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="MIME type detected server-side",
    )

    privacy_level: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="shared",
        server_default="shared",
    )
    doc_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    doc_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    source_channel: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="web_upload",
        server_default="web_upload",
        comment="web_upload | email_shared | email_private | transcript_import",
    )

    # Pipeline state
    processing_status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="pending",
        server_default="pending",
    )
    processing_error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Set when processing_status='failed'; also lists non-fatal stage errors",
    )

    # Derived artifacts
    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scrubbed_text:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_summary:     Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_confidence:  Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} status={self.processing_status} "
            f"title={self.title!r}>"
        )


# ---------------------------------------------------------------------------
# Chunk model: logbook.chunks
# ---------------------------------------------------------------------------

class Chunk(Base):
    """One contiguous slice of a document's text plus its embedding."""

    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunks_position"),
        Index("idx_chunks_document_id", "document_id"),
        {"schema": "logbook"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str]     = mapped_column(Text, nullable=False)
    char_start: Mapped[int]  = mapped_column(Integer, nullable=False)
    char_end: Mapped[int]    = mapped_column(Integer, nullable=False)
    embedding: Mapped[Optional[list[float]]] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# ---------------------------------------------------------------------------
# ProcessingLog model: logbook.processing_log
# ---------------------------------------------------------------------------

class ProcessingLog(Base):
    """
    One row per (document, stage, attempt).

    Rows are inserted as 'running'; the most recent running row for a stage
    is updated to 'completed' or 'failed' when the stage ends.
    """

    __tablename__ = "processing_log"
    __table_args__ = (
        CheckConstraint(
            "stage IN ('extraction', 'pii_scrub', 'categorization', 'embedding', 'indexing', 'entity_extraction')",
            name="processing_log_stage_check",
        ),
        CheckConstraint(
            "status IN ('running', 'completed', 'failed')",
            name="processing_log_status_check",
        ),
        Index("idx_processing_log_document", "document_id", "stage"),
        {"schema": "logbook"},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    stage: Mapped[str]  = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessingLog id={self.id} doc={self.document_id} "
            f"stage={self.stage} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# Categories: logbook.categories / logbook.document_categories
# ---------------------------------------------------------------------------

class Category(Base):
    __tablename__ = "categories"
    __table_args__ = ({"schema": "logbook"},)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.categories.id", ondelete="SET NULL"),
        nullable=True,
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


class DocumentCategory(Base):
    __tablename__ = "document_categories"
    __table_args__ = (
        UniqueConstraint("document_id", "category_id", name="uq_document_categories"),
        {"schema": "logbook"},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.categories.id", ondelete="CASCADE"),
        nullable=False,
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")


# ---------------------------------------------------------------------------
# Knowledge graph: logbook.entities / entity_mentions / entity_relations
# ---------------------------------------------------------------------------

class Entity(Base):
    """
    A named thing referenced across the archive.
    UNIQUE(name, entity_type) makes concurrent upserts from parallel
    workers converge on a single row.
    """

    __tablename__ = "entities"
    __table_args__ = (
        CheckConstraint(
            "entity_type IN ('asset', 'contractor', 'person', 'contract', 'rule', 'decision', 'promise', 'event')",
            name="entities_type_check",
        ),
        UniqueConstraint("name", "entity_type", name="uq_entities_name_type"),
        {"schema": "logbook"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    name: Mapped[str]        = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    properties: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
    )
    is_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    discovered_from_document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.documents.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Entity id={self.id} type={self.entity_type} name={self.name!r}>"


class EntityMention(Base):
    __tablename__ = "entity_mentions"
    __table_args__ = (
        UniqueConstraint("entity_id", "document_id", name="uq_entity_mentions"),
        Index("idx_entity_mentions_document", "document_id"),
        {"schema": "logbook"},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    context_snippet: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Context snippet, at most 500 characters",
    )


class EntityRelation(Base):
    __tablename__ = "entity_relations"
    __table_args__ = (
        CheckConstraint(
            "relation_type IN ('maintained_by', 'located_in', 'governed_by', 'promised_in', "
            "'contradicted_by', 'party_to', 'employed_by', 'manages', 'related_to')",
            name="entity_relations_type_check",
        ),
        UniqueConstraint(
            "source_entity_id", "target_entity_id", "relation_type", "source_document_id",
            name="uq_entity_relations",
        ),
        {"schema": "logbook"},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    source_entity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    target_entity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    relation_type: Mapped[str] = mapped_column(Text, nullable=False)
    source_document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logbook.documents.id", ondelete="SET NULL"),
        nullable=True,
    )
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
