"""
Celery Tasks: Document Processing

Task: process_document
  Runs the PipelineOrchestrator for one document. The orchestrator never
  raises; the outcome lives on the document row (processing_status,
  processing_error). Each task builds its own NullPool engine because the
  coroutine runs in a fresh event loop.

Task: requeue_stale_documents
  Beat task. Re-publishes documents stuck in 'pending' for more than five
  minutes, which covers broker failures at upload time.

Task: health_check
  Round-trip probe for the system.health queue.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from celery import Task
from sqlalchemy import select

from logbook.workers.celery_app import STALE_PENDING_SECONDS, celery_app

logger = logging.getLogger(__name__)

REQUEUE_BATCH_LIMIT = 100


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                future = pool.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name="logbook.workers.tasks.process_document",
    bind=True,
    max_retries=0,
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_document(self: Task, *, document_id: str) -> dict[str, Any]:
    """Run the full pipeline for one document."""
    return run_async(_process_document_async(uuid.UUID(document_id)))


async def _process_document_async(document_id: uuid.UUID) -> dict[str, Any]:
    from logbook.db.session import worker_session_factory
    from logbook.models.documents import Document
    from logbook.pipeline.factory import build_orchestrator

    engine, session_factory = worker_session_factory()
    try:
        orchestrator = build_orchestrator(session_factory)
        await orchestrator.process(document_id)

        async with session_factory() as session:
            doc = await session.get(Document, document_id)
            final_status = doc.processing_status if doc is not None else "missing"
    finally:
        await engine.dispose()

    return {"document_id": str(document_id), "status": final_status}


# ---------------------------------------------------------------------------
# Requeue scanner
# ---------------------------------------------------------------------------

@celery_app.task(name="logbook.workers.tasks.requeue_stale_documents")
def requeue_stale_documents() -> dict[str, int]:
    """Re-publish documents that have been pending longer than the stale window."""
    return run_async(_requeue_stale_async())


async def _requeue_stale_async() -> dict[str, int]:
    from logbook.db.session import worker_session_factory
    from logbook.models.documents import Document

    cutoff = datetime.now(timezone.utc) - timedelta(seconds=STALE_PENDING_SECONDS)

    engine, session_factory = worker_session_factory()
    try:
        async with session_factory() as session:
            result = await session.execute(
                select(Document.id)
                .where(Document.processing_status == "pending", Document.created_at < cutoff)
                .order_by(Document.created_at)
                .limit(REQUEUE_BATCH_LIMIT)
            )
            stale_ids = list(result.scalars().all())
    finally:
        await engine.dispose()

    for document_id in stale_ids:
        process_document.apply_async(kwargs={"document_id": str(document_id)})

    if stale_ids:
        logger.info("Requeued stale documents | count=%d", len(stale_ids))
    return {"requeued": len(stale_ids)}


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@celery_app.task(name="logbook.workers.tasks.health_check")
def health_check() -> dict[str, str]:
    return {"status": "ok", "checked_at": datetime.now(timezone.utc).isoformat()}
