"""
Inbound Email Webhook

POST /api/v1/webhooks/email

Accepts the Postmark inbound JSON payload. When EMAIL_WEBHOOK_SECRET is
configured the caller must present it as ``X-Webhook-Secret`` or
``Authorization: Bearer <secret>``.
"""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, status

from logbook.api.dependencies import Ingestion
from logbook.core.config import settings
from logbook.schemas.documents import (
    DocumentErrors,
    EmailWebhookPayload,
    EmailWebhookResponse,
    ErrorResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"],
)


def verify_webhook_secret(x_webhook_secret: str | None, authorization: str | None) -> bool:
    expected = settings.email_webhook_secret
    if not expected:
        return True

    presented = x_webhook_secret
    if presented is None and authorization and authorization.lower().startswith("bearer "):
        presented = authorization[7:].strip()
    if not presented:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


@router.post(
    "/email",
    response_model=EmailWebhookResponse,
    summary="Receive an inbound email",
    responses={
        200: {"model": EmailWebhookResponse},
        401: {"model": ErrorResponse, "description": "Missing or invalid webhook secret"},
    },
)
async def receive_email(
    payload:          EmailWebhookPayload,
    service:          Ingestion,
    x_webhook_secret: Optional[str] = Header(None),
    authorization:    Optional[str] = Header(None),
) -> EmailWebhookResponse:
    if not verify_webhook_secret(x_webhook_secret, authorization):
        logger.warning("Email webhook rejected | from=%s", payload.From)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=DocumentErrors.invalid_webhook_secret().model_dump(),
        )
    return await service.ingest_email(payload)
