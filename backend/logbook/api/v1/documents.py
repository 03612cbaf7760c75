"""
Document API Router

  POST   /api/v1/documents/upload              multipart upload → 202
  POST   /api/v1/documents/import-transcript   chat export → 202
  POST   /api/v1/documents/{id}/process        queue processing → 202
  POST   /api/v1/documents/{id}/reprocess      reset + queue → 202
  GET    /api/v1/documents/{id}/status         polling surface
  DELETE /api/v1/documents/{id}                remove document → 204

Request lifecycle (upload):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. File type validation (magic bytes + extension)       │
  │ 2. S3 upload under <S3_PREFIX>/                         │
  │ 3. DB insert (processing_status=pending), commit        │
  │ 4. Celery task published → returns 202                  │
  └─────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, HTTPException, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse

from logbook.api.dependencies import Indexer, Ingestion
from logbook.schemas.documents import (
    MAX_FILE_SIZE_BYTES,
    DocumentErrors,
    DocumentStatusResponse,
    DocumentUploadResponse,
    ErrorResponse,
    PrivacyLevel,
    ProcessAcceptedResponse,
    TranscriptImportRequest,
    TranscriptImportResponse,
)
from logbook.services.ingestion import DocumentBusyError, DocumentNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
)


def _not_found(exc: DocumentNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=DocumentErrors.document_not_found(exc.document_id).model_dump(),
    )


def _busy(exc: DocumentBusyError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=DocumentErrors.document_busy(exc.document_id).model_dump(),
    )


def _accepted(body: ProcessAcceptedResponse | TranscriptImportResponse | DocumentUploadResponse) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(mode="json"),
        headers={
            "X-Document-ID": str(body.document_id),
            "Location":      f"/api/v1/documents/{body.document_id}/status",
        },
    )


# ---------------------------------------------------------------------------
# POST /documents/upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a document for processing",
    description=(
        "Accepts PDF, DOCX, TXT, MD, CSV and images up to 50 MB. "
        "Returns 202 immediately; processing is asynchronous. "
        "Poll GET /documents/{id}/status for pipeline progress."
    ),
    responses={
        202: {"model": DocumentUploadResponse, "description": "File accepted for processing"},
        400: {"model": ErrorResponse, "description": "Missing file or unsupported type"},
        413: {"model": ErrorResponse, "description": "File exceeds 50 MB limit"},
        500: {"model": ErrorResponse, "description": "Storage or internal error"},
    },
)
async def upload_document(
    request:       Request,
    service:       Ingestion,
    file:          UploadFile           = File(..., description="Document file (max 50 MB)"),
    title:         Optional[str]        = Form(None, max_length=255),
    privacy_level: PrivacyLevel         = Form(PrivacyLevel.SHARED),
    uploaded_by:   Optional[str]        = Form(None, max_length=255),
) -> JSONResponse:
    # Guard: reject oversized requests before reading body
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_FILE_SIZE_BYTES + 4096:
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content=DocumentErrors.file_too_large(int(content_length)).model_dump(mode="json"),
        )

    result = await service.upload(
        file=file,
        title=title,
        privacy_level=privacy_level,
        uploaded_by=uploaded_by,
    )
    return _accepted(result)


# ---------------------------------------------------------------------------
# POST /documents/import-transcript
# ---------------------------------------------------------------------------

@router.post(
    "/import-transcript",
    response_model=TranscriptImportResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Import a chat transcript export",
    responses={
        202: {"model": TranscriptImportResponse},
        400: {"model": ErrorResponse, "description": "No messages could be parsed"},
    },
)
async def import_transcript(body: TranscriptImportRequest, service: Ingestion) -> JSONResponse:
    result = await service.import_transcript(
        content=body.content,
        title=body.title,
        privacy_level=body.privacy_level,
        uploaded_by=None,
    )
    return _accepted(result)


# ---------------------------------------------------------------------------
# POST /documents/{document_id}/process  and  /reprocess
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/process",
    response_model=ProcessAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue processing for a stored document",
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Document is already processing"},
    },
)
async def process_document(document_id: UUID, service: Ingestion) -> JSONResponse:
    try:
        result = await service.request_processing(document_id)
    except DocumentNotFoundError as exc:
        raise _not_found(exc)
    except DocumentBusyError as exc:
        raise _busy(exc)
    return _accepted(result)


@router.post(
    "/{document_id}/reprocess",
    response_model=ProcessAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Clear derived data and process again",
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Document is already processing"},
    },
)
async def reprocess_document(document_id: UUID, service: Ingestion) -> JSONResponse:
    try:
        result = await service.reprocess(document_id)
    except DocumentNotFoundError as exc:
        raise _not_found(exc)
    except DocumentBusyError as exc:
        raise _busy(exc)
    return _accepted(result)


# ---------------------------------------------------------------------------
# GET /documents/{document_id}/status
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/status",
    response_model=DocumentStatusResponse,
    summary="Poll async processing status",
    responses={
        200: {"model": DocumentStatusResponse},
        404: {"model": ErrorResponse},
    },
)
async def get_document_status(document_id: UUID, service: Ingestion) -> DocumentStatusResponse:
    try:
        return await service.get_status(document_id)
    except DocumentNotFoundError as exc:
        raise _not_found(exc)


# ---------------------------------------------------------------------------
# DELETE /documents/{document_id}
# ---------------------------------------------------------------------------

@router.delete(
    "/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a document and everything derived from it",
    responses={
        204: {"description": "Document deleted"},
        404: {"model": ErrorResponse},
    },
)
async def delete_document(document_id: UUID, service: Ingestion, indexer: Indexer) -> Response:
    try:
        await service.delete(document_id, indexer)
    except DocumentNotFoundError as exc:
        raise _not_found(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
