from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from receipt_intake.api.dependencies import get_pipeline
from receipt_intake.models.enums import ProcessingStatus
from receipt_intake.models.schemas import LedgerEntryRead, QueueStatus, RetryAccepted
from receipt_intake.services.ledger import MAX_LIST_LIMIT
from receipt_intake.services.pipeline import EmailPipeline

router = APIRouter()


# Static paths are declared before /{fingerprint} so they are not shadowed.
@router.get("/queue/status", response_model=QueueStatus)
async def queue_status(pipeline: EmailPipeline = Depends(get_pipeline)):
    return pipeline.status()


@router.get("/logs", response_model=List[LedgerEntryRead])
async def list_logs(
    status: Optional[ProcessingStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_LIST_LIMIT),
    pipeline: EmailPipeline = Depends(get_pipeline),
):
    """Most recent ledger entries, newest first (raw content omitted)."""
    return await pipeline.list_entries(status=status, limit=limit)


@router.get("/{fingerprint}", response_model=LedgerEntryRead)
async def get_log(fingerprint: str, pipeline: EmailPipeline = Depends(get_pipeline)):
    return await pipeline.get_entry(fingerprint)


@router.post("/{fingerprint}/retry", response_model=RetryAccepted)
async def retry_log(fingerprint: str, pipeline: EmailPipeline = Depends(get_pipeline)):
    """Re-queue a FAILED entry; 404 when unknown, 400 when not FAILED."""
    await pipeline.retry(fingerprint)
    return RetryAccepted(fingerprint=fingerprint)
