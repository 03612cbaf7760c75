"""
Composed FastAPI Dependencies

Route handlers import from here, never from db/session, storage/s3 or the
capability modules directly. Tests replace these with
``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from logbook.capabilities.base import SearchIndexer
from logbook.db.session import get_db
from logbook.pipeline.factory import get_search_indexer
from logbook.services.ingestion import IngestionService, TaskPublisher
from logbook.storage.s3 import DocumentStorage


def get_storage() -> DocumentStorage:
    return DocumentStorage()


def get_task_publisher() -> TaskPublisher:
    return TaskPublisher()


def get_indexer() -> SearchIndexer:
    return get_search_indexer()


DB        = Annotated[AsyncSession,    Depends(get_db)]
Storage   = Annotated[DocumentStorage, Depends(get_storage)]
Publisher = Annotated[TaskPublisher,   Depends(get_task_publisher)]
Indexer   = Annotated[SearchIndexer,   Depends(get_indexer)]


def get_ingestion_service(db: DB, storage: Storage, publisher: Publisher) -> IngestionService:
    return IngestionService(db=db, storage=storage, task_publisher=publisher)


Ingestion = Annotated[IngestionService, Depends(get_ingestion_service)]
