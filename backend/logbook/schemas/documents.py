"""
Document Ingestion: Pydantic Request/Response Schemas

Covers the HTTP surface of the archive:
  - Upload / transcript import / email webhook responses (202 Accepted)
  - Processing status polled by clients
  - All structured error bodies (400, 401, 404, 409, 413, 500)

Design decisions:
  - document_id is always server-generated (UUID4); never client-supplied.
  - processing_status is the async pipeline state, separate from HTTP status.
  - All timestamps are ISO-8601 UTC.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Allowed MIME types, enforced before touching S3
# ---------------------------------------------------------------------------

ALLOWED_CONTENT_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",  # .docx
        "text/plain",
        "text/markdown",
        "text/csv",
        "image/jpeg",
        "image/png",
    }
)

# 50 MB hard ceiling
MAX_FILE_SIZE_BYTES: int = 50 * 1024 * 1024


# ---------------------------------------------------------------------------
# Enumerations mirrored from the documents table
# ---------------------------------------------------------------------------

class ProcessingStatus(str, Enum):
    """
    Maps to logbook.documents.processing_status.
    Transitions: pending → processing → completed | failed | flagged_for_review
    """
    PENDING            = "pending"
    PROCESSING         = "processing"
    COMPLETED          = "completed"
    FAILED             = "failed"
    FLAGGED_FOR_REVIEW = "flagged_for_review"


class PrivacyLevel(str, Enum):
    SHARED     = "shared"
    PRIVATE    = "private"
    PRIVILEGED = "privileged"


class SourceChannel(str, Enum):
    WEB_UPLOAD        = "web_upload"
    EMAIL_SHARED      = "email_shared"
    EMAIL_PRIVATE     = "email_private"
    TRANSCRIPT_IMPORT = "transcript_import"


# ---------------------------------------------------------------------------
# Upload success response: 202 Accepted
# ---------------------------------------------------------------------------

class DocumentUploadResponse(BaseModel):
    """
    Returned immediately after a successful upload.
    HTTP 202: the file is stored but processing is async.
    """
    document_id:       UUID             = Field(..., description="Server-generated document UUID")
    processing_status: ProcessingStatus = Field(
        ProcessingStatus.PENDING,
        description="Async pipeline state; poll /documents/{id}/status for updates",
    )
    file_url:          str              = Field(..., description="Object key in the documents bucket")
    title:             str
    original_filename: str | None       = None
    size_bytes:        int              = Field(..., description="File size in bytes")
    content_type:      str              = Field(..., description="Detected MIME type")
    privacy_level:     PrivacyLevel
    created_at:        datetime         = Field(..., description="UTC timestamp of upload completion")


# ---------------------------------------------------------------------------
# Transcript import
# ---------------------------------------------------------------------------

class TranscriptImportRequest(BaseModel):
    content:       str               = Field(..., min_length=1, description="Raw chat export text")
    title:         str | None        = Field(None, max_length=255)
    privacy_level: PrivacyLevel      = PrivacyLevel.SHARED


class TranscriptImportResponse(BaseModel):
    document_id:       UUID
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    title:             str
    participants:      list[str]
    message_count:     int
    start_date:        date | None
    end_date:          date | None


# ---------------------------------------------------------------------------
# Process / reprocess
# ---------------------------------------------------------------------------

class ProcessAcceptedResponse(BaseModel):
    document_id:       UUID
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    message:           str              = "Processing queued"


# ---------------------------------------------------------------------------
# Document status response: GET /documents/{id}/status
# ---------------------------------------------------------------------------

class StageHistoryEntry(BaseModel):
    stage:         str
    status:        str
    error_message: str | None = None
    started_at:    datetime
    completed_at:  datetime | None = None


class DocumentStatusResponse(BaseModel):
    """Polled by clients to track async processing progress."""
    document_id:  UUID
    status:       ProcessingStatus
    error:        str | None      = None
    summary:      str | None      = None
    confidence:   float | None    = None
    processed_at: datetime | None = None
    searchable:   bool            = Field(False, description="Latest indexing stage completed")
    stages:       list[StageHistoryEntry] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Inbound email webhook (Postmark inbound JSON)
# ---------------------------------------------------------------------------

class EmailAttachment(BaseModel):
    Name:          str
    Content:       str = Field(..., description="Base64-encoded file content")
    ContentType:   str = "application/octet-stream"
    ContentLength: int | None = None


class EmailWebhookPayload(BaseModel):
    From:        str
    FromName:    str | None = None
    To:          str        = ""
    Subject:     str | None = None
    TextBody:    str | None = None
    Attachments: list[EmailAttachment] = Field(default_factory=list)


class EmailWebhookResponse(BaseModel):
    received:     bool = True
    document_ids: list[UUID] = Field(default_factory=list)
    skipped:      int  = 0


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error; may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


# ---------------------------------------------------------------------------
# Pre-defined error factories (keeps route handlers thin)
# ---------------------------------------------------------------------------

class DocumentErrors:
    """Factories for every documented error case."""

    @staticmethod
    def unsupported_file_type(filename: str, detected_type: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="UNSUPPORTED_FILE_TYPE",
            message=f"File type '{detected_type}' is not supported.",
            details=[
                ErrorDetail(
                    field="file",
                    message=(
                        f"'{filename}' has an unsupported type '{detected_type}'. "
                        f"Allowed: PDF, DOCX, TXT, MD, CSV, JPEG, PNG."
                    ),
                    code="UNSUPPORTED_FILE_TYPE",
                )
            ],
        )

    @staticmethod
    def file_too_large(size_bytes: int) -> ErrorResponse:
        max_mb = MAX_FILE_SIZE_BYTES // (1024 * 1024)
        return ErrorResponse(
            error_code="FILE_TOO_LARGE",
            message=f"Uploaded file exceeds the {max_mb} MB limit.",
            details=[
                ErrorDetail(
                    field="file",
                    message=f"Received {size_bytes:,} bytes; limit is {MAX_FILE_SIZE_BYTES:,} bytes.",
                    code="FILE_TOO_LARGE",
                )
            ],
        )

    @staticmethod
    def missing_file() -> ErrorResponse:
        return ErrorResponse(
            error_code="MISSING_FILE",
            message="No file was provided in the request.",
            details=[
                ErrorDetail(
                    field="file",
                    message="The 'file' multipart field is required and must not be empty.",
                    code="MISSING_FILE",
                )
            ],
        )

    @staticmethod
    def empty_transcript() -> ErrorResponse:
        return ErrorResponse(
            error_code="EMPTY_TRANSCRIPT",
            message="No chat messages could be parsed from the transcript.",
            details=[
                ErrorDetail(
                    field="content",
                    message="Expected lines such as '[2024/01/15, 09:30:00] Name: message'.",
                    code="EMPTY_TRANSCRIPT",
                )
            ],
        )

    @staticmethod
    def document_not_found(document_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="DOCUMENT_NOT_FOUND",
            message=f"Document '{document_id}' was not found.",
            details=[],
        )

    @staticmethod
    def document_busy(document_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="DOCUMENT_BUSY",
            message=f"Document '{document_id}' is currently being processed.",
            details=[
                ErrorDetail(
                    field=None,
                    message="Wait for the current run to finish, then retry.",
                    code="DOCUMENT_BUSY",
                )
            ],
        )

    @staticmethod
    def storage_error(detail: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="STORAGE_ERROR",
            message="Failed to store the document. Please retry.",
            details=(
                [ErrorDetail(field=None, message=detail, code="STORAGE_ERROR")]
                if detail
                else []
            ),
        )

    @staticmethod
    def queue_error() -> ErrorResponse:
        return ErrorResponse(
            error_code="QUEUE_ERROR",
            message="Document was stored but could not be queued for processing.",
            details=[
                ErrorDetail(
                    field=None,
                    message="The message broker may be temporarily unavailable. The document will be retried.",
                    code="QUEUE_ERROR",
                )
            ],
        )

    @staticmethod
    def invalid_webhook_secret() -> ErrorResponse:
        return ErrorResponse(
            error_code="UNAUTHORIZED",
            message="Missing or invalid webhook secret.",
            details=[],
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            details=[],
            request_id=request_id,
        )


# ---------------------------------------------------------------------------
# HTTP status code → error code mapping (for OpenAPI documentation)
# ---------------------------------------------------------------------------

HTTP_ERROR_MAP: dict[int, str] = {
    400: "INVALID_REQUEST",        # unsupported type, empty transcript, missing file
    401: "UNAUTHORIZED",           # webhook secret mismatch
    404: "DOCUMENT_NOT_FOUND",
    409: "DOCUMENT_BUSY",          # processing already running
    413: "FILE_TOO_LARGE",
    422: "VALIDATION_ERROR",       # FastAPI Pydantic validation failure
    500: "INTERNAL_ERROR",
    503: "QUEUE_ERROR",            # broker unavailable
}
