"""
Text Extraction
═══════════════

Turns a stored file into plain text.

  text/*          decoded in-process (UTF-8, latin-1 fallback)
  everything else
    ├─ UNSTRUCTURED_API_KEY set  → POST to the Unstructured partition API;
    │                              element texts joined with blank lines
    └─ no key                    → local parsers: pypdf for PDF,
                                   python-docx for DOCX

Any failure (missing object, HTTP error, unsupported type, empty result)
surfaces as ``ExtractionError``, which is the pipeline's one fatal stage
error.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time

import httpx

from logbook.capabilities.base import ExtractionError, TextExtractor
from logbook.storage.s3 import DocumentStorage

logger = logging.getLogger(__name__)

PDF_MIME  = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def decode_text(data: bytes) -> str:
    """Decode with UTF-8, fall back to latin-1."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1", errors="replace")


def _extract_pdf(data: bytes) -> str:
    """Extract text from PDF bytes using pypdf."""
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(p for p in pages if p.strip())


def _extract_docx(data: bytes) -> str:
    """Extract text from DOCX bytes using python-docx."""
    import docx

    doc = docx.Document(io.BytesIO(data))
    return "\n\n".join(para.text for para in doc.paragraphs if para.text.strip())


class DocumentTextExtractor(TextExtractor):
    """
    Constructor args:
        storage    : where ``file_url`` keys are read from
        api_url    : Unstructured partition endpoint
        api_key    : Unstructured API key; empty = parse locally
        timeout    : HTTP timeout in seconds
        transport  : optional httpx transport (tests)
    """

    def __init__(
        self,
        storage:   DocumentStorage,
        api_url:   str,
        api_key:   str = "",
        timeout:   float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._storage   = storage
        self._api_url   = api_url
        self._api_key   = api_key
        self._timeout   = timeout
        self._transport = transport

    async def extract_text(self, file_url: str, mime_type: str) -> str:
        t0 = time.monotonic()
        try:
            data = await self._storage.get_object(file_url)
        except FileNotFoundError as exc:
            raise ExtractionError(f"File not found in storage: {file_url}") from exc

        if mime_type.startswith("text/"):
            text = decode_text(data)
            method = "decode"
        elif self._api_key:
            text = await self._partition_remote(data, file_url, mime_type)
            method = "unstructured"
        else:
            text = await self._partition_local(data, mime_type)
            method = "local"

        if not text.strip():
            raise ExtractionError("No text could be extracted from the document")

        logger.info(
            "Extraction | method=%s mime=%s bytes=%d chars=%d elapsed_ms=%.0f",
            method, mime_type, len(data), len(text), (time.monotonic() - t0) * 1000,
        )
        return text

    async def _partition_remote(self, data: bytes, file_url: str, mime_type: str) -> str:
        filename = file_url.rsplit("/", 1)[-1]
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as http:
                resp = await http.post(
                    self._api_url,
                    headers={"unstructured-api-key": self._api_key, "accept": "application/json"},
                    files={"files": (filename, data, mime_type)},
                )
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExtractionError(
                f"Unstructured API error {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Unstructured API unreachable: {exc}") from exc

        elements = resp.json()
        if not isinstance(elements, list):
            raise ExtractionError("Unexpected Unstructured API response")
        return "\n\n".join(
            el["text"] for el in elements
            if isinstance(el, dict) and isinstance(el.get("text"), str) and el["text"].strip()
        )

    async def _partition_local(self, data: bytes, mime_type: str) -> str:
        if mime_type == PDF_MIME:
            parser = _extract_pdf
        elif mime_type == DOCX_MIME:
            parser = _extract_docx
        else:
            raise ExtractionError(f"Unsupported file type for local extraction: {mime_type}")

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, parser, data)
        except Exception as exc:
            logger.warning("Local extraction failed | mime=%s error=%s", mime_type, exc)
            raise ExtractionError(f"Could not parse {mime_type}: {exc}") from exc
