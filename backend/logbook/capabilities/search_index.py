"""
Meilisearch full-text index.

One Meilisearch document per archive document, keyed by the document id.
The index is created lazily on first write with the filterable / sortable
attributes the search UI needs. With no ``MEILISEARCH_HOST`` configured
both operations are no-ops, so the indexing stage still completes.
"""

from __future__ import annotations

import logging
import uuid

import httpx

from logbook.capabilities.base import IndexPayload, SearchIndexer

logger = logging.getLogger(__name__)

INDEX_SETTINGS = {
    "searchableAttributes": ["title", "content"],
    "filterableAttributes": ["privacy_level", "doc_type", "doc_date", "uploaded_by"],
    "sortableAttributes":   ["doc_date", "created_at"],
}


def build_index_document(document_id: uuid.UUID, payload: IndexPayload) -> dict:
    return {
        "id":            str(document_id),
        "title":         payload.title,
        "content":       payload.content,
        "privacy_level": payload.privacy_level,
        "doc_type":      payload.doc_type,
        "doc_date":      payload.doc_date.isoformat() if payload.doc_date else None,
        "uploaded_by":   payload.uploaded_by,
        "created_at":    payload.created_at.isoformat() if payload.created_at else None,
    }


class MeilisearchIndexer(SearchIndexer):

    def __init__(
        self,
        host:      str,
        api_key:   str = "",
        index:     str = "documents",
        timeout:   float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host      = host.rstrip("/")
        self._api_key   = api_key
        self._index     = index
        self._timeout   = timeout
        self._transport = transport
        self._index_ready = False

    @property
    def enabled(self) -> bool:
        return bool(self._host)

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return httpx.AsyncClient(
            base_url=self._host,
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _ensure_index(self, http: httpx.AsyncClient) -> None:
        if self._index_ready:
            return
        resp = await http.get(f"/indexes/{self._index}")
        if resp.status_code == 404:
            created = await http.post("/indexes", json={"uid": self._index, "primaryKey": "id"})
            created.raise_for_status()
            updated = await http.patch(f"/indexes/{self._index}/settings", json=INDEX_SETTINGS)
            updated.raise_for_status()
            logger.info("Search index created | index=%s", self._index)
        else:
            resp.raise_for_status()
        self._index_ready = True

    async def index_document(self, document_id: uuid.UUID, payload: IndexPayload) -> None:
        if not self.enabled:
            logger.debug("Search indexing disabled | doc=%s", document_id)
            return
        async with self._client() as http:
            await self._ensure_index(http)
            resp = await http.post(
                f"/indexes/{self._index}/documents",
                json=[build_index_document(document_id, payload)],
            )
            resp.raise_for_status()
        logger.info("Indexed | doc=%s index=%s chars=%d", document_id, self._index, len(payload.content))

    async def remove_document(self, document_id: uuid.UUID) -> None:
        if not self.enabled:
            return
        async with self._client() as http:
            resp = await http.delete(f"/indexes/{self._index}/documents/{document_id}")
            if resp.status_code != 404:
                resp.raise_for_status()
        logger.info("Removed from index | doc=%s index=%s", document_id, self._index)
