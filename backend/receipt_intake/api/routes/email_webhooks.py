from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from receipt_intake.api.dependencies import get_pipeline
from receipt_intake.core.observability import sentry_set_tags
from receipt_intake.models.schemas import InboundEmail, IngestionOutcome
from receipt_intake.services.pipeline import EmailPipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


async def _read_payload(request: Request) -> Dict[str, Any]:
    """Decode a Mailgun-style delivery posted as JSON or as a form."""
    content_type = (request.headers.get("content-type") or "").lower()
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            # JSONDecodeError and UnicodeDecodeError
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Expected a JSON object")
        return payload
    form = await request.form()
    # Attachments are ignored; only string fields are read
    return {k: v for k, v in form.items() if isinstance(v, str)}


@router.post("/webhooks/email", response_model=IngestionOutcome)
async def email_webhook(request: Request, pipeline: EmailPipeline = Depends(get_pipeline)):
    """Receive an inbound email.

    Responds 200 with ``queued`` or ``duplicate``; 401 bad signature,
    403 sender not allowed, 400 empty content, 429 rate limited and 503
    when the ingestion queue is full.
    """
    payload = await _read_payload(request)
    try:
        inbound = InboundEmail.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid email payload: {exc.error_count()} errors")

    sentry_set_tags({"webhook": "email"})
    logger.info("[webhook] inbound email subject=%r", inbound.subject[:80])
    return await pipeline.ingest(inbound)
