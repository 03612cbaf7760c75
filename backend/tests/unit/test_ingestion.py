"""
Unit Tests: IngestionService
════════════════════════════
Tests for every ingestion channel and lifecycle operation.

All tests:
  • Use mock_db, mock_storage, mock_publisher from conftest.py
  • Never touch real PostgreSQL, real S3, or real Celery

Coverage targets:
  ✅ Valid PDF / TXT upload → pending document, committed, published
  ✅ Empty file  → 400 MISSING_FILE
  ✅ Oversized   → 413 FILE_TOO_LARGE
  ✅ Bad type    → 400 UNSUPPORTED_FILE_TYPE
  ✅ S3 failure  → 500 STORAGE_ERROR
  ✅ Broker down → still accepted (requeue picks it up)
  ✅ Commit happens before publish
  ✅ Transcript import: extracted_text prefilled, default title, empty → 400
  ✅ Email: attachments, body fallback, private routing, bad attachments skipped
  ✅ Process / reprocess: 404, 409, reset of derived fields
  ✅ Status: stage history and searchable flag
  ✅ Delete: best-effort index and file removal
"""

from __future__ import annotations

import base64
import io
import uuid
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest
from fastapi import HTTPException, UploadFile

from logbook.models.documents import Document
from logbook.schemas.documents import (
    EmailAttachment,
    EmailWebhookPayload,
    PrivacyLevel,
    ProcessingStatus,
)
from logbook.services.ingestion import (
    DocumentBusyError,
    DocumentNotFoundError,
    _detect_mime_type,
    _sanitize_filename,
    default_transcript_title,
)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _make_upload_file(filename: str, content: bytes) -> UploadFile:
    """Build a FastAPI UploadFile backed by an in-memory BytesIO buffer."""
    return UploadFile(filename=filename, file=io.BytesIO(content))


def _added_documents(mock_db) -> list[Document]:
    return [c.args[0] for c in mock_db.add.call_args_list]


def _existing(status: str = "completed", **fields) -> SimpleNamespace:
    defaults = dict(
        id=uuid.uuid4(),
        processing_status=status,
        processing_error=None,
        ai_summary=None,
        ai_confidence=None,
        processed_at=None,
        file_url="documents/x_minutes.pdf",
        doc_type=None,
    )
    defaults.update(fields)
    return SimpleNamespace(**defaults)


def _execute_returning(entries: list) -> AsyncMock:
    result = MagicMock()
    result.scalars.return_value.all.return_value = entries
    return AsyncMock(return_value=result)


# ─────────────────────────────────────────────────────────────────────────────
# Pure helpers
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestHelpers:

    @pytest.mark.parametrize("name,head,expected", [
        ("a.pdf",  b"%PDF-1.7", "application/pdf"),
        ("a.bin",  b"%PDF-1.7", "application/pdf"),
        ("a.docx", b"PK\x03\x04", "application/vnd.openxmlformats-officedocument.wordprocessingml.document"),
        ("a.jpg",  b"\xff\xd8\xff\xe0", "image/jpeg"),
        ("a.txt",  b"hello", "text/plain"),
        ("a.MD",   b"# title", "text/markdown"),
        ("a.csv",  b"a,b", "text/csv"),
    ])
    def test_detect_mime_type(self, name, head, expected):
        assert _detect_mime_type(name, head) == expected

    def test_sanitize_filename_strips_path(self):
        assert _sanitize_filename("../../etc/pass wd.txt") == "pass_wd.txt"
        assert _sanitize_filename("C:\\Users\\me\\levy.pdf") == "levy.pdf"

    @pytest.mark.parametrize("participants,expected", [
        (["Alice"], "Chat: Alice"),
        (["A", "B", "C"], "Chat: A, B, C"),
        (["A", "B", "C", "D"], "Chat: A, B, C..."),
    ])
    def test_default_transcript_title(self, participants, expected):
        assert default_transcript_title(participants) == expected


# ─────────────────────────────────────────────────────────────────────────────
# Upload
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestUpload:

    async def test_valid_pdf(self, make_service, mock_db, mock_storage, mock_publisher, sample_pdf_bytes):
        service = make_service()

        response = await service.upload(
            _make_upload_file("AGM minutes.pdf", sample_pdf_bytes),
            title=None,
            privacy_level=PrivacyLevel.SHARED,
            uploaded_by="trustee@example.com",
        )

        assert response.processing_status == ProcessingStatus.PENDING
        assert response.content_type == "application/pdf"
        assert response.title == "AGM minutes.pdf"
        assert response.size_bytes == len(sample_pdf_bytes)
        assert response.file_url == f"documents/{response.document_id}_AGM_minutes.pdf"

        [doc] = _added_documents(mock_db)
        assert doc.processing_status == "pending"
        assert doc.source_channel == "web_upload"
        assert doc.extracted_text is None

        mock_db.commit.assert_awaited_once()
        mock_publisher.publish_processing_task.assert_awaited_once_with(response.document_id)

    async def test_title_and_privacy_kept(self, make_service, mock_db, sample_txt_bytes):
        service = make_service()

        response = await service.upload(
            _make_upload_file("levies.txt", sample_txt_bytes),
            title="  Levy schedule 2024  ",
            privacy_level=PrivacyLevel.PRIVATE,
            uploaded_by=None,
        )

        assert response.title == "Levy schedule 2024"
        assert response.privacy_level == PrivacyLevel.PRIVATE
        assert response.content_type == "text/plain"
        assert _added_documents(mock_db)[0].privacy_level == "private"

    async def test_commit_before_publish(self, make_service, mock_db, mock_publisher, sample_pdf_bytes):
        order = MagicMock()
        mock_db.commit.side_effect = lambda: order("commit")
        mock_publisher.publish_processing_task.side_effect = lambda _id: order("publish")

        await make_service().upload(
            _make_upload_file("a.pdf", sample_pdf_bytes), None, PrivacyLevel.SHARED, None,
        )

        assert order.call_args_list == [call("commit"), call("publish")]

    async def test_empty_file_rejected(self, make_service):
        with pytest.raises(HTTPException) as exc_info:
            await make_service().upload(
                _make_upload_file("empty.pdf", b""), None, PrivacyLevel.SHARED, None,
            )

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["error_code"] == "MISSING_FILE"

    async def test_oversized_file_rejected(self, make_service, mock_storage):
        with patch("logbook.services.ingestion.MAX_FILE_SIZE_BYTES", 10):
            with pytest.raises(HTTPException) as exc_info:
                await make_service().upload(
                    _make_upload_file("big.txt", b"x" * 11), None, PrivacyLevel.SHARED, None,
                )

        assert exc_info.value.status_code == 413
        assert exc_info.value.detail["error_code"] == "FILE_TOO_LARGE"
        mock_storage.put_object.assert_not_awaited()

    async def test_unsupported_type_rejected(self, make_service, mock_storage, mock_db, exe_bytes):
        with pytest.raises(HTTPException) as exc_info:
            await make_service().upload(
                _make_upload_file("setup.exe", exe_bytes), None, PrivacyLevel.SHARED, None,
            )

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["error_code"] == "UNSUPPORTED_FILE_TYPE"
        mock_storage.put_object.assert_not_awaited()
        mock_db.add.assert_not_called()

    async def test_storage_failure_is_500(self, make_service, mock_storage, mock_db, sample_pdf_bytes):
        mock_storage.put_object.side_effect = RuntimeError("S3 down")

        with pytest.raises(HTTPException) as exc_info:
            await make_service().upload(
                _make_upload_file("a.pdf", sample_pdf_bytes), None, PrivacyLevel.SHARED, None,
            )

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail["error_code"] == "STORAGE_ERROR"
        mock_db.add.assert_not_called()

    async def test_broker_failure_is_non_fatal(self, make_service, mock_publisher, mock_db, sample_pdf_bytes):
        mock_publisher.publish_processing_task.side_effect = ConnectionError("broker unreachable")

        response = await make_service().upload(
            _make_upload_file("a.pdf", sample_pdf_bytes), None, PrivacyLevel.SHARED, None,
        )

        assert response.processing_status == ProcessingStatus.PENDING
        mock_db.commit.assert_awaited_once()


# ─────────────────────────────────────────────────────────────────────────────
# Transcript import
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestTranscriptImport:

    async def test_import_prefills_extracted_text(self, make_service, mock_db, mock_storage, sample_transcript):
        response = await make_service().import_transcript(
            sample_transcript, title=None, privacy_level=PrivacyLevel.SHARED, uploaded_by="bob",
        )

        assert response.title == "Chat: Alice Smith, Bob Jones, Carol White..."
        assert response.message_count == 4
        assert response.start_date == date(2024, 1, 15)
        assert response.end_date == date(2024, 1, 16)

        [doc] = _added_documents(mock_db)
        assert doc.mime_type == "text/plain"
        assert doc.doc_type == "chat"
        assert doc.doc_date == date(2024, 1, 15)
        assert doc.source_channel == "transcript_import"
        assert doc.extracted_text.startswith("Chat Export\n")

        stored_body = mock_storage.put_object.await_args.args[1]
        assert stored_body.decode("utf-8") == doc.extracted_text

    async def test_explicit_title(self, make_service, sample_transcript):
        response = await make_service().import_transcript(
            sample_transcript, title="Lift outage chat", privacy_level=PrivacyLevel.SHARED, uploaded_by=None,
        )
        assert response.title == "Lift outage chat"

    async def test_no_messages_rejected(self, make_service, mock_storage, mock_publisher):
        with pytest.raises(HTTPException) as exc_info:
            await make_service().import_transcript(
                "just some notes\nwith no timestamps", None, PrivacyLevel.SHARED, None,
            )

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["error_code"] == "EMPTY_TRANSCRIPT"
        mock_storage.put_object.assert_not_awaited()
        mock_publisher.publish_processing_task.assert_not_awaited()


# ─────────────────────────────────────────────────────────────────────────────
# Inbound email
# ─────────────────────────────────────────────────────────────────────────────

def _attachment(name: str, content: bytes) -> EmailAttachment:
    return EmailAttachment(Name=name, Content=base64.b64encode(content).decode())


@pytest.mark.unit
class TestEmailIngestion:

    async def test_one_document_per_attachment(self, make_service, mock_db, mock_publisher, sample_pdf_bytes):
        payload = EmailWebhookPayload(
            From="agent@example.com",
            To="archive@example.com",
            Subject="Quotes",
            TextBody="See attached",
            Attachments=[
                _attachment("quote-1.pdf", sample_pdf_bytes),
                _attachment("quote-2.pdf", sample_pdf_bytes),
            ],
        )

        response = await make_service().ingest_email(payload)

        assert len(response.document_ids) == 2
        assert response.skipped == 0
        docs = _added_documents(mock_db)
        assert [d.source_channel for d in docs] == ["email_shared", "email_shared"]
        assert all(d.uploaded_by == "agent@example.com" for d in docs)
        mock_db.commit.assert_awaited_once()
        assert mock_publisher.publish_processing_task.await_count == 2

    async def test_private_address_routes_private(self, make_service, mock_db, sample_pdf_bytes):
        payload = EmailWebhookPayload(
            From="owner@example.com",
            To="Private-Archive@example.com",
            Attachments=[_attachment("letter.pdf", sample_pdf_bytes)],
        )

        await make_service().ingest_email(payload)

        [doc] = _added_documents(mock_db)
        assert doc.privacy_level == "private"
        assert doc.source_channel == "email_private"

    async def test_bad_attachments_skipped(self, make_service, mock_db, sample_pdf_bytes, exe_bytes):
        payload = EmailWebhookPayload(
            From="agent@example.com",
            Attachments=[
                EmailAttachment(Name="broken.pdf", Content="%%% not base64 %%%"),
                _attachment("virus.exe", exe_bytes),
                _attachment("ok.pdf", sample_pdf_bytes),
            ],
        )

        response = await make_service().ingest_email(payload)

        assert len(response.document_ids) == 1
        assert response.skipped == 2

    async def test_body_becomes_document_without_attachments(self, make_service, mock_db, mock_storage):
        payload = EmailWebhookPayload(
            From="chair@example.com",
            FromName="The Chair",
            Subject="Water shutdown Friday",
            TextBody="Water will be off from 9 to 12.",
        )

        response = await make_service().ingest_email(payload)

        assert len(response.document_ids) == 1
        [doc] = _added_documents(mock_db)
        assert doc.title == "Water shutdown Friday"
        assert doc.doc_type == "email"
        assert doc.mime_type == "text/plain"
        body = mock_storage.put_object.await_args.args[1].decode()
        assert body == (
            "From: The Chair <chair@example.com>\n"
            "Subject: Water shutdown Friday\n\n"
            "Water will be off from 9 to 12."
        )

    async def test_nothing_usable_creates_nothing(self, make_service, mock_db, mock_publisher):
        response = await make_service().ingest_email(EmailWebhookPayload(From="x@example.com", TextBody="  "))

        assert response.document_ids == []
        mock_db.commit.assert_not_awaited()
        mock_publisher.publish_processing_task.assert_not_awaited()


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle operations
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestRequestProcessing:

    async def test_missing_document(self, make_service):
        with pytest.raises(DocumentNotFoundError):
            await make_service().request_processing(uuid.uuid4())

    async def test_busy_document(self, make_service, mock_db, mock_publisher):
        mock_db.get.return_value = _existing("processing")

        with pytest.raises(DocumentBusyError):
            await make_service().request_processing(uuid.uuid4())
        mock_publisher.publish_processing_task.assert_not_awaited()

    async def test_publishes_without_changing_status(self, make_service, mock_db, mock_publisher):
        doc = _existing("failed")
        mock_db.get.return_value = doc

        response = await make_service().request_processing(doc.id)

        assert response.processing_status == ProcessingStatus.FAILED
        mock_publisher.publish_processing_task.assert_awaited_once_with(doc.id)
        mock_db.execute.assert_not_awaited()


@pytest.mark.unit
class TestReprocess:

    async def test_busy_document(self, make_service, mock_db):
        mock_db.get.return_value = _existing("processing")
        with pytest.raises(DocumentBusyError):
            await make_service().reprocess(uuid.uuid4())

    async def test_clears_artifacts_and_requeues(self, make_service, mock_db, mock_publisher):
        doc = _existing("completed", ai_summary="old", ai_confidence=0.9)
        mock_db.get.return_value = doc

        response = await make_service().reprocess(doc.id)

        assert response.processing_status == ProcessingStatus.PENDING
        assert response.message == "Reprocessing queued"

        statements = [str(c.args[0]) for c in mock_db.execute.await_args_list]
        assert len(statements) == 5
        assert "DELETE FROM logbook.chunks" in statements[0]
        assert "DELETE FROM logbook.processing_log" in statements[1]
        assert "DELETE FROM logbook.entity_mentions" in statements[2]
        assert "DELETE FROM logbook.entity_relations" in statements[3]
        assert "source_document_id" in statements[3]
        assert statements[4].startswith("UPDATE logbook.documents")
        assert "extracted_text" in statements[4]
        assert "doc_date" in statements[4]

        mock_db.commit.assert_awaited_once()
        mock_publisher.publish_processing_task.assert_awaited_once_with(doc.id)

    async def test_chat_import_keeps_transcript_date(self, make_service, mock_db):
        doc = _existing("completed", doc_type="chat")
        mock_db.get.return_value = doc

        await make_service().reprocess(doc.id)

        update_sql = str(mock_db.execute.await_args_list[-1].args[0])
        assert update_sql.startswith("UPDATE logbook.documents")
        assert "doc_date" not in update_sql


@pytest.mark.unit
class TestStatus:

    async def test_missing_document(self, make_service):
        with pytest.raises(DocumentNotFoundError):
            await make_service().get_status(uuid.uuid4())

    async def test_stage_history_and_searchable(self, make_service, mock_db):
        started = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        doc = _existing("completed", ai_summary="AGM minutes", ai_confidence=0.85, processed_at=started)
        mock_db.get.return_value = doc
        mock_db.execute = _execute_returning([
            SimpleNamespace(stage="extraction", status="completed", error_message=None,
                            started_at=started, completed_at=started),
            SimpleNamespace(stage="indexing", status="failed", error_message="timeout",
                            started_at=started, completed_at=started),
            SimpleNamespace(stage="indexing", status="completed", error_message=None,
                            started_at=started, completed_at=started),
        ])

        response = await make_service().get_status(doc.id)

        assert response.status == ProcessingStatus.COMPLETED
        assert response.summary == "AGM minutes"
        assert response.confidence == 0.85
        assert response.searchable is True
        assert [s.stage for s in response.stages] == ["extraction", "indexing", "indexing"]
        assert response.stages[1].error_message == "timeout"

    async def test_not_searchable_when_last_indexing_failed(self, make_service, mock_db):
        started = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        mock_db.get.return_value = _existing("completed")
        mock_db.execute = _execute_returning([
            SimpleNamespace(stage="indexing", status="failed", error_message="refused",
                            started_at=started, completed_at=started),
        ])

        response = await make_service().get_status(uuid.uuid4())
        assert response.searchable is False


@pytest.mark.unit
class TestDelete:

    async def test_removes_index_file_and_row(self, make_service, mock_db, mock_storage, mock_indexer):
        doc = _existing("completed")
        mock_db.get.return_value = doc

        await make_service().delete(doc.id, mock_indexer)

        mock_indexer.remove_document.assert_awaited_once_with(doc.id)
        mock_storage.delete_object.assert_awaited_once_with(doc.file_url)
        statement = str(mock_db.execute.await_args.args[0])
        assert statement.startswith("DELETE FROM logbook.documents")

    async def test_external_failures_do_not_block_delete(self, make_service, mock_db, mock_storage, mock_indexer):
        doc = _existing("completed")
        mock_db.get.return_value = doc
        mock_indexer.remove_document.side_effect = RuntimeError("search down")
        mock_storage.delete_object.side_effect = RuntimeError("s3 down")

        await make_service().delete(doc.id, mock_indexer)

        mock_db.execute.assert_awaited_once()

    async def test_missing_document(self, make_service, mock_indexer):
        with pytest.raises(DocumentNotFoundError):
            await make_service().delete(uuid.uuid4(), mock_indexer)
        mock_indexer.remove_document.assert_not_awaited()
