"""
Persistence boundary for the processing pipeline.

The orchestrator only talks to ``PipelineRepository``. The PostgreSQL
implementation opens one short transaction per call so that every stage's
side effects are committed before the next stage begins.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Sequence

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from logbook.models.documents import Chunk, Document, ProcessingLog
from logbook.pipeline.outcome import Stage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DocumentSnapshot:
    """The fields of a Document the pipeline reads."""
    id:                uuid.UUID
    title:             str | None
    original_filename: str | None
    file_url:          str
    mime_type:         str
    privacy_level:     str
    doc_type:          str | None
    doc_date:          date | None
    uploaded_by:       str | None
    created_at:        datetime | None
    extracted_text:    str | None

    @property
    def display_title(self) -> str:
        return self.title or self.original_filename or "Untitled"


@dataclass(frozen=True)
class ChunkRecord:
    chunk_index: int
    content:     str
    char_start:  int
    char_end:    int
    embedding:   list[float]


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class PipelineRepository(ABC):

    @abstractmethod
    async def get_document(self, document_id: uuid.UUID) -> DocumentSnapshot | None:
        ...

    @abstractmethod
    async def update_document(self, document_id: uuid.UUID, **fields: Any) -> None:
        ...

    @abstractmethod
    async def insert_stage_entry(self, document_id: uuid.UUID, stage: Stage) -> None:
        """Append a ``running`` entry for ``stage``."""
        ...

    @abstractmethod
    async def finish_stage_entry(
        self,
        document_id: uuid.UUID,
        stage:       Stage,
        status:      str,
        error:       str | None = None,
    ) -> None:
        """Move the most recent ``running`` entry for ``stage`` to ``status``."""
        ...

    @abstractmethod
    async def replace_chunks(self, document_id: uuid.UUID, chunks: Sequence[ChunkRecord]) -> None:
        """Delete every chunk of the document, then insert ``chunks`` in order."""
        ...


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------

class SqlPipelineRepository(PipelineRepository):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_document(self, document_id: uuid.UUID) -> DocumentSnapshot | None:
        async with self._session_factory() as session:
            result = await session.execute(select(Document).where(Document.id == document_id))
            doc = result.scalars().first()

        if doc is None:
            return None
        return DocumentSnapshot(
            id=doc.id,
            title=doc.title,
            original_filename=doc.original_filename,
            file_url=doc.file_url,
            mime_type=doc.mime_type,
            privacy_level=doc.privacy_level,
            doc_type=doc.doc_type,
            doc_date=doc.doc_date,
            uploaded_by=doc.uploaded_by,
            created_at=doc.created_at,
            extracted_text=doc.extracted_text,
        )

    async def update_document(self, document_id: uuid.UUID, **fields: Any) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(Document).where(Document.id == document_id).values(**fields)
                )

    async def insert_stage_entry(self, document_id: uuid.UUID, stage: Stage) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(ProcessingLog(
                    document_id=document_id,
                    stage=stage.value,
                    status="running",
                    started_at=datetime.now(timezone.utc),
                ))

    async def finish_stage_entry(
        self,
        document_id: uuid.UUID,
        stage:       Stage,
        status:      str,
        error:       str | None = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(ProcessingLog.id)
                    .where(
                        ProcessingLog.document_id == document_id,
                        ProcessingLog.stage == stage.value,
                        ProcessingLog.status == "running",
                    )
                    .order_by(ProcessingLog.started_at.desc(), ProcessingLog.id.desc())
                    .limit(1)
                )
                entry_id = result.scalar_one_or_none()

                if entry_id is None:
                    logger.warning(
                        "No running stage entry to finish | doc=%s stage=%s", document_id, stage.value,
                    )
                    session.add(ProcessingLog(
                        document_id=document_id,
                        stage=stage.value,
                        status=status,
                        error_message=error,
                        started_at=now,
                        completed_at=now,
                    ))
                    return

                await session.execute(
                    update(ProcessingLog)
                    .where(ProcessingLog.id == entry_id)
                    .values(status=status, error_message=error, completed_at=now)
                )

    async def replace_chunks(self, document_id: uuid.UUID, chunks: Sequence[ChunkRecord]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(Chunk).where(Chunk.document_id == document_id))
                if chunks:
                    await session.execute(
                        insert(Chunk),
                        [
                            {
                                "document_id": document_id,
                                "chunk_index": c.chunk_index,
                                "content":     c.content,
                                "char_start":  c.char_start,
                                "char_end":    c.char_end,
                                "embedding":   c.embedding,
                            }
                            for c in chunks
                        ],
                    )
        logger.info("Chunks replaced | doc=%s count=%d", document_id, len(chunks))

