"""
S3 Document Storage

Every uploaded file is stored under a single server-controlled prefix:

    s3://<BUCKET>/<S3_PREFIX>/<object_name>

Object names are generated server-side (``<uuid>_<sanitized filename>``);
a client never supplies a raw S3 key. The key returned by ``put_object``
is what ``documents.file_url`` stores and what the text extractor later
reads back through ``get_object``.

Works against AWS S3 or any S3-compatible endpoint (LocalStack, MinIO)
when ``S3_ENDPOINT_URL`` is set.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from typing import BinaryIO

import aioboto3
from botocore.exceptions import ClientError

from logbook.core.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoredObject:
    """Represents a stored object, returned by put_object."""
    key:          str          # full S3 key including prefix
    bucket:       str
    size_bytes:   int
    content_type: str
    etag:         str


# ---------------------------------------------------------------------------
# Storage service
# ---------------------------------------------------------------------------

class DocumentStorage:
    """Async S3 operations for document files."""

    def __init__(self, bucket: str | None = None, prefix: str | None = None) -> None:
        self._bucket  = bucket or settings.s3_bucket
        self._prefix  = (prefix if prefix is not None else settings.s3_prefix).strip("/")
        self._session = aioboto3.Session()

    @property
    def bucket(self) -> str:
        return self._bucket

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self):
        """Return an async S3 client context manager."""
        kwargs: dict = {"region_name": settings.aws_region}
        if settings.s3_endpoint_url:
            kwargs["endpoint_url"] = settings.s3_endpoint_url
        if settings.aws_access_key_id:
            kwargs["aws_access_key_id"]     = settings.aws_access_key_id
            kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
        return self._session.client("s3", **kwargs)

    def key_for(self, object_name: str) -> str:
        safe_name = object_name.replace("/", "_").replace("..", "_")
        return f"{self._prefix}/{safe_name}" if self._prefix else safe_name

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def put_object(
        self,
        object_name:  str,
        body:         bytes | BinaryIO,
        content_type: str | None = None,
        metadata:     dict[str, str] | None = None,
    ) -> StoredObject:
        """
        Upload a file under the document prefix.

        Args:
            object_name:  Server-generated name; directory components are stripped.
            body:         Raw bytes or file-like object.
            content_type: MIME type; guessed from the name if omitted.
            metadata:     Optional string key/value pairs stored in S3 metadata.
        """
        key = self.key_for(object_name)
        ct  = content_type or mimetypes.guess_type(object_name)[0] or "application/octet-stream"
        raw = body if isinstance(body, bytes) else body.read()

        async with self._client() as s3:
            resp = await s3.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=raw,
                ContentType=ct,
                Metadata=metadata or {},
            )

        logger.info("S3 upload ok | key=%s size=%d type=%s", key, len(raw), ct)

        return StoredObject(
            key=key,
            bucket=self._bucket,
            size_bytes=len(raw),
            content_type=ct,
            etag=resp.get("ETag", "").strip('"'),
        )

    async def get_object(self, key: str) -> bytes:
        """Download an object by its full key; raises FileNotFoundError if absent."""
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                return await resp["Body"].read()
            except ClientError as exc:
                code = exc.response["Error"]["Code"]
                if code in ("NoSuchKey", "404"):
                    raise FileNotFoundError(f"Object not found: {key}") from exc
                raise

    async def delete_object(self, key: str) -> None:
        async with self._client() as s3:
            await s3.delete_object(Bucket=self._bucket, Key=key)
        logger.info("S3 delete | key=%s", key)

    async def check_health(self) -> dict:
        """HEAD the bucket; used by /ready."""
        try:
            async with self._client() as s3:
                await s3.head_bucket(Bucket=self._bucket)
            return {"status": "ok"}
        except ClientError as exc:
            logger.error("S3 health check failed: %s", exc)
            return {"status": "error", "detail": exc.response["Error"].get("Code", str(exc))}
