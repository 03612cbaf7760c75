"""
Pipeline Orchestrator
═════════════════════

Drives one document through the six processing stages:

  ┌──────────────┐   ┌───────────┐   ┌────────────────┐
  │ extraction   │──▶│ pii_scrub │──▶│ categorization │
  └──────────────┘   └───────────┘   └────────────────┘
          │ fatal                              │
          ▼                                    ▼
       failed        ┌───────────┐   ┌──────────┐   ┌───────────────────┐
                     │ embedding │──▶│ indexing │──▶│ entity_extraction │
                     └───────────┘   └──────────┘   └───────────────────┘

Only extraction is fatal. Every other stage failure is logged in the Stage
Log, recorded as a ``StageFailure`` and the run continues. After the last
stage ``decide_terminal_status()`` picks completed / failed /
flagged_for_review and the joined error text.

Artifacts written per stage (each in its own transaction):
  extraction         documents.extracted_text        (skipped when already set)
  pii_scrub          documents.scrubbed_text         (raw text on failure)
  categorization     ai_summary, ai_confidence, doc_date (only when unset)
  embedding          chunks (delete all, insert fresh set)
  indexing           search index entry built from the scrubbed text
  entity_extraction  entities / mentions / relations  (raw text)

``process()`` never raises. Callers read the outcome from the Document row.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone

from logbook.capabilities.base import (
    CategorizationResult,
    ExtractionError,
    IndexPayload,
    PipelineCapabilities,
)
from logbook.pipeline.outcome import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DocumentStatus,
    Stage,
    StageOutcome,
    decide_terminal_status,
)
from logbook.pipeline.repository import ChunkRecord, DocumentSnapshot, PipelineRepository
from logbook.pipeline.stage_log import StageLog
from logbook.processing.chunking import ParagraphChunker

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineOrchestrator:
    """
    One instance per worker task; holds no per-document state between calls.
    """

    def __init__(
        self,
        repository:   PipelineRepository,
        capabilities: PipelineCapabilities,
        chunker:      ParagraphChunker | None = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> None:
        self._repo      = repository
        self._caps      = capabilities
        self._chunker   = chunker or ParagraphChunker()
        self._threshold = confidence_threshold

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def process(self, document_id: uuid.UUID) -> None:
        try:
            await self._run(document_id)
        except Exception as exc:
            logger.exception("Pipeline error | doc=%s", document_id)
            await self._record_pipeline_failure(document_id, f"pipeline: {exc}")

    # ------------------------------------------------------------------
    # Stage sequence
    # ------------------------------------------------------------------

    async def _run(self, document_id: uuid.UUID) -> None:
        doc = await self._repo.get_document(document_id)
        if doc is None:
            logger.error("Document not found | doc=%s", document_id)
            await self._repo.update_document(
                document_id,
                processing_status=DocumentStatus.FAILED.value,
                processing_error="Document not found",
                processed_at=_utcnow(),
            )
            return

        logger.info("Processing | doc=%s mime=%s", document_id, doc.mime_type)
        await self._repo.update_document(
            document_id,
            processing_status=DocumentStatus.PROCESSING.value,
            processing_error=None,
        )

        stage_log = StageLog(self._repo, document_id)
        outcomes: list[StageOutcome] = []

        # --- extraction (fatal) -------------------------------------------
        if doc.extracted_text:
            outcomes.append(await stage_log.record_instant(Stage.EXTRACTION))
            text = doc.extracted_text
        else:
            outcome, text = await stage_log.run(Stage.EXTRACTION, lambda: self._extract(doc))
            outcomes.append(outcome)
            if not outcome.ok or text is None:
                await self._finish(document_id, outcomes, confidence=None)
                return

        # --- pii_scrub ----------------------------------------------------
        outcome, scrubbed = await stage_log.run(Stage.PII_SCRUB, lambda: self._scrub(document_id, text))
        outcomes.append(outcome)
        if not outcome.ok or scrubbed is None:
            scrubbed = text
            await self._repo.update_document(document_id, scrubbed_text=text)

        # --- categorization -----------------------------------------------
        outcome, categorization = await stage_log.run(
            Stage.CATEGORIZATION, lambda: self._categorize(document_id, text, doc.doc_date),
        )
        outcomes.append(outcome)
        confidence = categorization.confidence if categorization is not None else None
        doc_date = doc.doc_date
        if doc_date is None and categorization is not None:
            doc_date = categorization.extracted_date

        # --- embedding ----------------------------------------------------
        outcome, _ = await stage_log.run(Stage.EMBEDDING, lambda: self._embed(document_id, text))
        outcomes.append(outcome)

        # --- indexing -----------------------------------------------------
        payload = IndexPayload(
            title=doc.display_title,
            content=scrubbed,
            privacy_level=doc.privacy_level,
            doc_type=doc.doc_type,
            doc_date=doc_date,
            uploaded_by=doc.uploaded_by,
            created_at=doc.created_at,
        )
        outcome, _ = await stage_log.run(
            Stage.INDEXING, lambda: self._caps.indexer.index_document(document_id, payload),
        )
        outcomes.append(outcome)

        # --- entity_extraction --------------------------------------------
        outcome, _ = await stage_log.run(
            Stage.ENTITY_EXTRACTION,
            lambda: self._caps.entity_extractor.extract_entities(text, document_id),
        )
        outcomes.append(outcome)

        await self._finish(document_id, outcomes, confidence)

    # ------------------------------------------------------------------
    # Stage bodies
    # ------------------------------------------------------------------

    async def _extract(self, doc: DocumentSnapshot) -> str:
        text = await self._caps.extractor.extract_text(doc.file_url, doc.mime_type)
        if not text or not text.strip():
            raise ExtractionError("No text could be extracted from the document")
        await self._repo.update_document(doc.id, extracted_text=text)
        return text

    async def _scrub(self, document_id: uuid.UUID, text: str) -> str:
        scrubbed = await self._caps.pii_scrubber.scrub(text)
        await self._repo.update_document(document_id, scrubbed_text=scrubbed)
        return scrubbed

    async def _categorize(
        self, document_id: uuid.UUID, text: str, known_date: date | None,
    ) -> CategorizationResult:
        result = await self._caps.categorizer.categorize(text, document_id)
        fields: dict = {
            "ai_summary":    result.summary,
            "ai_confidence": result.confidence,
        }
        if known_date is None and result.extracted_date is not None:
            fields["doc_date"] = result.extracted_date
        await self._repo.update_document(document_id, **fields)
        return result

    async def _embed(self, document_id: uuid.UUID, text: str) -> int:
        chunks = self._chunker.chunk(text)
        vectors: list[list[float]] = []
        if chunks:
            vectors = await self._caps.embedder.generate_embeddings([c.content for c in chunks])
        if len(vectors) != len(chunks):
            raise ValueError(
                f"Embedder returned {len(vectors)} vectors for {len(chunks)} chunks"
            )

        await self._repo.replace_chunks(
            document_id,
            [
                ChunkRecord(
                    chunk_index=chunk.index,
                    content=chunk.content,
                    char_start=chunk.char_start,
                    char_end=chunk.char_end,
                    embedding=vector,
                )
                for chunk, vector in zip(chunks, vectors)
            ],
        )
        return len(chunks)

    # ------------------------------------------------------------------
    # Terminal state
    # ------------------------------------------------------------------

    async def _finish(
        self,
        document_id: uuid.UUID,
        outcomes:    list[StageOutcome],
        confidence:  float | None,
    ) -> None:
        decision = decide_terminal_status(outcomes, confidence, self._threshold)
        await self._repo.update_document(
            document_id,
            processing_status=decision.status.value,
            processing_error=decision.error,
            processed_at=_utcnow(),
        )
        logger.info(
            "Processing finished | doc=%s status=%s confidence=%s errors=%s",
            document_id, decision.status.value, confidence, decision.error,
        )

    async def _record_pipeline_failure(self, document_id: uuid.UUID, message: str) -> None:
        try:
            await self._repo.update_document(
                document_id,
                processing_status=DocumentStatus.FAILED.value,
                processing_error=message,
                processed_at=_utcnow(),
            )
        except Exception:
            logger.exception("Could not record pipeline failure | doc=%s", document_id)
