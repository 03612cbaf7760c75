"""
Document Ingestion Service

Every ingestion channel ends in the same steps:
  1. Validate file type and size (magic bytes, extension fallback)
  2. Upload to S3 under <S3_PREFIX>/<document_id>_<sanitized filename>
  3. Insert the document record (processing_status=pending)
  4. Commit, then publish the processing task to Celery

Channels:
  upload()             multipart upload from the web UI
  import_transcript()  chat export; parsed and normalized before storage so
                       the record starts with extracted_text already set
  ingest_email()       inbound email webhook; one document per attachment,
                       or the body itself when there are none

Lifecycle operations on existing documents:
  request_processing()  publish again (404 missing, 409 while processing)
  reprocess()           clear derived artifacts, reset to pending, publish
  get_status()          polling surface with the stage history
  delete()              drop the search-index entry, the file and the row

A failed publish is non-fatal: the document is stored and the beat task
``requeue_stale_documents`` picks up anything left pending.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import mimetypes
import re
import uuid
from datetime import date, datetime, timezone

from fastapi import HTTPException, UploadFile, status
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from logbook.capabilities.base import SearchIndexer
from logbook.models.documents import Chunk, Document, EntityMention, EntityRelation, ProcessingLog
from logbook.pipeline.outcome import DocumentStatus, Stage
from logbook.processing.transcript import parse_transcript, render_transcript
from logbook.schemas.documents import (
    ALLOWED_CONTENT_TYPES,
    MAX_FILE_SIZE_BYTES,
    DocumentErrors,
    DocumentStatusResponse,
    DocumentUploadResponse,
    EmailWebhookPayload,
    EmailWebhookResponse,
    PrivacyLevel,
    ProcessAcceptedResponse,
    ProcessingStatus,
    SourceChannel,
    StageHistoryEntry,
    TranscriptImportResponse,
)
from logbook.storage.s3 import DocumentStorage, StoredObject

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Service errors (mapped to 404 / 409 by the router)
# ---------------------------------------------------------------------------

class DocumentNotFoundError(Exception):
    def __init__(self, document_id: uuid.UUID) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class DocumentBusyError(Exception):
    def __init__(self, document_id: uuid.UUID) -> None:
        super().__init__(f"Document {document_id} is already processing")
        self.document_id = document_id


# ---------------------------------------------------------------------------
# File type validation helpers
# ---------------------------------------------------------------------------

# Magic byte signatures, checked against the first 8 bytes of the file
_MAGIC_BYTES: dict[bytes, str] = {
    b"%PDF":               "application/pdf",
    b"PK\x03\x04":         "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    b"\xff\xd8\xff":       "image/jpeg",
    b"\x89PNG\r\n\x1a\n":  "image/png",
}

_TEXT_EXTENSIONS: dict[str, str] = {
    ".txt": "text/plain",
    ".md":  "text/markdown",
    ".csv": "text/csv",
}

TRANSCRIPT_TITLE_PARTICIPANTS = 3


def _detect_mime_type(filename: str, file_head: bytes) -> str:
    """
    Detect MIME type using magic bytes first, falling back to extension.
    Never trusts the client-supplied Content-Type.
    """
    for magic, mime in _MAGIC_BYTES.items():
        if file_head.startswith(magic):
            return mime

    ext = _get_extension(filename)
    if ext in _TEXT_EXTENSIONS:
        return _TEXT_EXTENSIONS[ext]

    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def _get_extension(filename: str) -> str:
    """Return lowercased file extension including the dot."""
    parts = filename.rsplit(".", 1)
    return f".{parts[-1].lower()}" if len(parts) == 2 else ""


def _sanitize_filename(filename: str) -> str:
    """
    Strip path components and replace unsafe characters.
    Returns only the basename with OS-safe characters.
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r'[^a-zA-Z0-9._\-]', '_', basename)
    return safe[:200]


def default_transcript_title(participants: list[str]) -> str:
    """``Chat: A, B, C`` with a trailing ``...`` when more people took part."""
    shown = ", ".join(participants[:TRANSCRIPT_TITLE_PARTICIPANTS])
    suffix = "..." if len(participants) > TRANSCRIPT_TITLE_PARTICIPANTS else ""
    return f"Chat: {shown}{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Core ingestion service
# ---------------------------------------------------------------------------

class IngestionService:
    """
    Stateless service object, one instance per request.
    All dependencies are injected (testable, no hidden globals).
    """

    def __init__(
        self,
        db:             AsyncSession,
        storage:        DocumentStorage,
        task_publisher: "TaskPublisher",
    ) -> None:
        self._db        = db
        self._storage   = storage
        self._publisher = task_publisher

    # ------------------------------------------------------------------
    # Ingestion channels
    # ------------------------------------------------------------------

    async def upload(
        self,
        file:          UploadFile,
        title:         str | None,
        privacy_level: PrivacyLevel,
        uploaded_by:   str | None,
    ) -> DocumentUploadResponse:
        """Store a multipart upload and queue it. Raises HTTPException on invalid input."""
        file_bytes = await self._read_upload(file)
        filename   = file.filename or "upload"

        detected_mime = _detect_mime_type(filename, file_bytes[:8])
        if detected_mime not in ALLOWED_CONTENT_TYPES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=DocumentErrors.unsupported_file_type(filename, detected_mime).model_dump(),
            )

        doc, stored = await self._store_document(
            file_bytes=file_bytes,
            filename=filename,
            mime_type=detected_mime,
            title=(title or "").strip() or filename,
            privacy_level=privacy_level,
            source_channel=SourceChannel.WEB_UPLOAD,
            uploaded_by=uploaded_by,
        )
        await self._commit_and_publish(doc.id)

        return DocumentUploadResponse(
            document_id=doc.id,
            processing_status=ProcessingStatus.PENDING,
            file_url=stored.key,
            title=doc.title,
            original_filename=doc.original_filename,
            size_bytes=stored.size_bytes,
            content_type=detected_mime,
            privacy_level=privacy_level,
            created_at=doc.created_at,
        )

    async def import_transcript(
        self,
        content:       str,
        title:         str | None,
        privacy_level: PrivacyLevel,
        uploaded_by:   str | None,
    ) -> TranscriptImportResponse:
        """
        Parse a chat export, store the normalized rendering as text/plain and
        create a document whose extraction stage is already satisfied.
        """
        parsed = parse_transcript(content)
        if parsed.message_count == 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=DocumentErrors.empty_transcript().model_dump(),
            )

        rendered = render_transcript(parsed)
        doc_title = (title or "").strip() or default_transcript_title(parsed.participants)
        start_date = parsed.start_timestamp.date() if parsed.start_timestamp else None
        end_date   = parsed.end_timestamp.date() if parsed.end_timestamp else None

        doc, _ = await self._store_document(
            file_bytes=rendered.encode("utf-8"),
            filename="chat-export.txt",
            mime_type="text/plain",
            title=doc_title,
            privacy_level=privacy_level,
            source_channel=SourceChannel.TRANSCRIPT_IMPORT,
            uploaded_by=uploaded_by,
            extracted_text=rendered,
            doc_type="chat",
            doc_date=start_date,
        )
        await self._commit_and_publish(doc.id)

        logger.info(
            "Transcript imported | doc=%s messages=%d participants=%d",
            doc.id, parsed.message_count, len(parsed.participants),
        )
        return TranscriptImportResponse(
            document_id=doc.id,
            title=doc_title,
            participants=parsed.participants,
            message_count=parsed.message_count,
            start_date=start_date,
            end_date=end_date,
        )

    async def ingest_email(self, payload: EmailWebhookPayload) -> EmailWebhookResponse:
        """
        One document per attachment; the body becomes a text document when
        there are no attachments. A bad attachment is logged and skipped.
        """
        is_private = "private" in payload.To.lower()
        privacy    = PrivacyLevel.PRIVATE if is_private else PrivacyLevel.SHARED
        channel    = SourceChannel.EMAIL_PRIVATE if is_private else SourceChannel.EMAIL_SHARED
        sender     = payload.From

        created: list[uuid.UUID] = []
        skipped = 0

        for attachment in payload.Attachments:
            try:
                file_bytes = base64.b64decode(attachment.Content, validate=True)
            except (binascii.Error, ValueError):
                logger.warning("Email attachment not base64 | name=%s from=%s", attachment.Name, sender)
                skipped += 1
                continue

            mime = _detect_mime_type(attachment.Name, file_bytes[:8])
            if not file_bytes or mime not in ALLOWED_CONTENT_TYPES or len(file_bytes) > MAX_FILE_SIZE_BYTES:
                logger.warning(
                    "Email attachment rejected | name=%s type=%s size=%d",
                    attachment.Name, mime, len(file_bytes),
                )
                skipped += 1
                continue

            try:
                doc, _ = await self._store_document(
                    file_bytes=file_bytes,
                    filename=attachment.Name,
                    mime_type=mime,
                    title=attachment.Name,
                    privacy_level=privacy,
                    source_channel=channel,
                    uploaded_by=sender,
                )
            except HTTPException:
                logger.warning("Email attachment not stored | name=%s", attachment.Name)
                skipped += 1
                continue
            created.append(doc.id)

        if not payload.Attachments and payload.TextBody and payload.TextBody.strip():
            from_line = f"{payload.FromName} <{sender}>" if payload.FromName else sender
            body = f"From: {from_line}\nSubject: {payload.Subject or ''}\n\n{payload.TextBody}"
            doc, _ = await self._store_document(
                file_bytes=body.encode("utf-8"),
                filename="email.txt",
                mime_type="text/plain",
                title=payload.Subject or f"Email from {payload.FromName or sender}",
                privacy_level=privacy,
                source_channel=channel,
                uploaded_by=sender,
                doc_type="email",
            )
            created.append(doc.id)

        if created:
            await self._db.commit()
            for document_id in created:
                await self._publish(document_id)

        logger.info(
            "Email ingested | from=%s private=%s documents=%d skipped=%d",
            sender, is_private, len(created), skipped,
        )
        return EmailWebhookResponse(document_ids=created, skipped=skipped)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def request_processing(self, document_id: uuid.UUID) -> ProcessAcceptedResponse:
        doc = await self._get_idle_document(document_id)
        await self._publish(doc.id)
        return ProcessAcceptedResponse(
            document_id=doc.id,
            processing_status=ProcessingStatus(doc.processing_status),
        )

    async def reprocess(self, document_id: uuid.UUID) -> ProcessAcceptedResponse:
        """Clear every derived artifact, reset to pending and queue a fresh run."""
        doc = await self._get_idle_document(document_id)

        await self._db.execute(delete(Chunk).where(Chunk.document_id == doc.id))
        await self._db.execute(delete(ProcessingLog).where(ProcessingLog.document_id == doc.id))
        await self._db.execute(delete(EntityMention).where(EntityMention.document_id == doc.id))
        await self._db.execute(
            delete(EntityRelation).where(EntityRelation.source_document_id == doc.id)
        )

        reset = dict(
            processing_status=DocumentStatus.PENDING.value,
            processing_error=None,
            extracted_text=None,
            scrubbed_text=None,
            ai_summary=None,
            ai_confidence=None,
            processed_at=None,
        )
        # chat imports carry their date from the transcript; elsewhere it is inferred
        if doc.doc_type != "chat":
            reset["doc_date"] = None
        await self._db.execute(update(Document).where(Document.id == doc.id).values(**reset))
        logger.info("Reprocess reset | doc=%s", doc.id)

        await self._commit_and_publish(doc.id)
        return ProcessAcceptedResponse(document_id=doc.id, message="Reprocessing queued")

    async def get_status(self, document_id: uuid.UUID) -> DocumentStatusResponse:
        doc = await self._get_document(document_id)

        result = await self._db.execute(
            select(ProcessingLog)
            .where(ProcessingLog.document_id == document_id)
            .order_by(ProcessingLog.started_at, ProcessingLog.id)
        )
        entries = list(result.scalars().all())

        indexing = [e for e in entries if e.stage == Stage.INDEXING.value]
        searchable = bool(indexing) and indexing[-1].status == "completed"

        return DocumentStatusResponse(
            document_id=doc.id,
            status=ProcessingStatus(doc.processing_status),
            error=doc.processing_error,
            summary=doc.ai_summary,
            confidence=doc.ai_confidence,
            processed_at=doc.processed_at,
            searchable=searchable,
            stages=[
                StageHistoryEntry(
                    stage=e.stage,
                    status=e.status,
                    error_message=e.error_message,
                    started_at=e.started_at,
                    completed_at=e.completed_at,
                )
                for e in entries
            ],
        )

    async def delete(self, document_id: uuid.UUID, indexer: SearchIndexer) -> None:
        """Remove index entry and file (best effort), then the row; FKs cascade."""
        doc = await self._get_document(document_id)

        try:
            await indexer.remove_document(doc.id)
        except Exception as exc:
            logger.warning("Index removal failed | doc=%s error=%s", doc.id, exc)

        try:
            await self._storage.delete_object(doc.file_url)
        except Exception as exc:
            logger.warning("File removal failed | doc=%s key=%s error=%s", doc.id, doc.file_url, exc)

        await self._db.execute(delete(Document).where(Document.id == doc.id))
        logger.info("Document deleted | doc=%s", doc.id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _store_document(
        self,
        *,
        file_bytes:     bytes,
        filename:       str,
        mime_type:      str,
        title:          str,
        privacy_level:  PrivacyLevel,
        source_channel: SourceChannel,
        uploaded_by:    str | None,
        extracted_text: str | None = None,
        doc_type:       str | None = None,
        doc_date:       date | None = None,
    ) -> tuple[Document, StoredObject]:
        document_id   = uuid.uuid4()
        safe_filename = _sanitize_filename(filename)

        try:
            stored = await self._storage.put_object(
                f"{document_id}_{safe_filename}",
                file_bytes,
                content_type=mime_type,
                metadata={
                    "document_id":    str(document_id),
                    "source_channel": source_channel.value,
                },
            )
        except Exception as exc:
            logger.exception("S3 upload failed | doc=%s", document_id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=DocumentErrors.storage_error(str(exc)).model_dump(),
            )

        doc = Document(
            id=document_id,
            uploaded_by=uploaded_by,
            title=title[:255],
            original_filename=filename,
            file_url=stored.key,
            file_size_bytes=stored.size_bytes,
            mime_type=mime_type,
            privacy_level=privacy_level.value,
            doc_type=doc_type,
            doc_date=doc_date,
            source_channel=source_channel.value,
            processing_status=DocumentStatus.PENDING.value,
            extracted_text=extracted_text,
            created_at=_utcnow(),
        )
        self._db.add(doc)
        await self._db.flush()

        logger.info(
            "Document stored | doc=%s channel=%s type=%s size=%d",
            document_id, source_channel.value, mime_type, stored.size_bytes,
        )
        return doc, stored

    async def _commit_and_publish(self, document_id: uuid.UUID) -> None:
        # The worker reads the row, so it must be committed first
        await self._db.commit()
        await self._publish(document_id)

    async def _publish(self, document_id: uuid.UUID) -> None:
        try:
            await self._publisher.publish_processing_task(document_id)
        except Exception as exc:
            # Non-fatal: requeue_stale_documents re-publishes pending documents
            logger.error("Failed to publish processing task | doc=%s error=%s", document_id, exc)

    async def _get_document(self, document_id: uuid.UUID) -> Document:
        doc = await self._db.get(Document, document_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)
        return doc

    async def _get_idle_document(self, document_id: uuid.UUID) -> Document:
        doc = await self._get_document(document_id)
        if doc.processing_status == DocumentStatus.PROCESSING.value:
            raise DocumentBusyError(document_id)
        return doc

    async def _read_upload(self, file: UploadFile) -> bytes:
        """
        Read the upload into memory with a hard size ceiling.
        Raises 400/413 if the file is missing or too large.
        """
        if file is None or file.filename is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=DocumentErrors.missing_file().model_dump(),
            )

        data = await file.read()

        if not data:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=DocumentErrors.missing_file().model_dump(),
            )

        if len(data) > MAX_FILE_SIZE_BYTES:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=DocumentErrors.file_too_large(len(data)).model_dump(),
            )

        return data


# ---------------------------------------------------------------------------
# Task publisher: thin abstraction over Celery apply_async()
# Injected into IngestionService so it can be mocked in tests.
# ---------------------------------------------------------------------------

class TaskPublisher:
    """
    Sends the document processing task to the Celery broker.
    Import is deferred so the broker connection is not required at module load time.
    """

    async def publish_processing_task(self, document_id: uuid.UUID) -> None:
        """
        Dispatch process_document.apply_async() to the Celery worker.
        Runs in a thread executor to avoid blocking the async event loop.
        """
        from logbook.workers.tasks import process_document

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: process_document.apply_async(kwargs={"document_id": str(document_id)}),
        )
        logger.info("Processing task published | doc=%s", document_id)
