import pytest

from receipt_intake.models.enums import ProcessingStatus
from receipt_intake.models.schemas import QueuedMessage
from receipt_intake.scripts.check_db import summarize
from receipt_intake.services.ledger import ProcessingLedger


@pytest.mark.asyncio
async def test_summarize_counts_by_status(session_factory):
    ledger = ProcessingLedger(session_factory)
    for fp in ("a" * 64, "b" * 64):
        await ledger.create_if_absent(QueuedMessage(fingerprint=fp, sender_email="x@example.com", content="c"))
    await ledger.transition("a" * 64, ProcessingStatus.FAILED, error_message="boom")

    summary = await summarize(session_factory)
    assert summary["total"] == 2
    assert summary["counts"]["FAILED"] == 1
    assert summary["counts"]["PENDING"] == 1
    assert summary["counts"]["COMPLETED"] == 0
    assert summary["recent"][0]["fingerprint"] == "b" * 64
