from __future__ import annotations

import asyncio

import pytest

from receipt_intake.core.errors import InvalidTransition, LedgerEntryNotFound
from receipt_intake.models.enums import ProcessingStatus
from receipt_intake.models.schemas import QueuedMessage
from receipt_intake.models.tables import Order
from receipt_intake.services.ledger import ProcessingLedger, can_transition


def _message(fp: str = "f" * 64, content: str = "Milk 2L") -> QueuedMessage:
    return QueuedMessage(fingerprint=fp, sender_email="receipts@example.com", subject="Receipt", content=content)


async def _make_order(session_factory) -> int:
    import datetime as dt

    async with session_factory() as session:
        order = Order(name="o", purchase_date=dt.date(2024, 1, 1))
        session.add(order)
        await session.commit()
        return order.id


@pytest.mark.asyncio
async def test_create_if_absent_deduplicates(session_factory):
    ledger = ProcessingLedger(session_factory)
    assert await ledger.create_if_absent(_message()) is True
    assert await ledger.create_if_absent(_message(content="other body")) is False

    entry = await ledger.get("f" * 64)
    assert entry.status == ProcessingStatus.PENDING
    # the second insert wrote nothing
    assert entry.raw_content == "Milk 2L"
    assert len(await ledger.list_recent()) == 1


@pytest.mark.asyncio
async def test_concurrent_inserts_create_exactly_one_entry(session_factory):
    ledger = ProcessingLedger(session_factory)
    results = await asyncio.gather(*(ledger.create_if_absent(_message()) for _ in range(5)))
    assert results.count(True) == 1
    assert len(await ledger.list_recent()) == 1


@pytest.mark.asyncio
async def test_lifecycle_to_completed(session_factory):
    ledger = ProcessingLedger(session_factory)
    order_id = await _make_order(session_factory)
    await ledger.create_if_absent(_message())
    await ledger.transition("f" * 64, ProcessingStatus.PROCESSING)
    await ledger.transition("f" * 64, ProcessingStatus.COMPLETED, order_id=order_id, error_message="ignored")

    entry = await ledger.get_read("f" * 64)
    assert entry.status == ProcessingStatus.COMPLETED
    assert entry.order_id == order_id
    assert entry.error_message is None
    assert entry.processed_at is not None


@pytest.mark.asyncio
async def test_completed_requires_order_id(session_factory):
    ledger = ProcessingLedger(session_factory)
    await ledger.create_if_absent(_message())
    await ledger.transition("f" * 64, ProcessingStatus.PROCESSING)
    with pytest.raises(InvalidTransition):
        await ledger.transition("f" * 64, ProcessingStatus.COMPLETED)


@pytest.mark.asyncio
async def test_illegal_transitions_rejected(session_factory):
    ledger = ProcessingLedger(session_factory)
    await ledger.create_if_absent(_message())
    with pytest.raises(InvalidTransition):
        await ledger.transition("f" * 64, ProcessingStatus.COMPLETED, order_id=1)
    with pytest.raises(InvalidTransition):
        await ledger.transition("f" * 64, ProcessingStatus.PENDING)
    with pytest.raises(LedgerEntryNotFound):
        await ledger.transition("0" * 64, ProcessingStatus.PROCESSING)


def test_transition_table():
    assert can_transition(ProcessingStatus.FAILED, ProcessingStatus.PENDING)
    assert not can_transition(ProcessingStatus.COMPLETED, ProcessingStatus.PENDING)
    assert not can_transition(ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)
    assert not can_transition(ProcessingStatus.FAILED, ProcessingStatus.PROCESSING)


@pytest.mark.asyncio
async def test_reset_for_retry(session_factory):
    ledger = ProcessingLedger(session_factory)
    await ledger.create_if_absent(_message())
    await ledger.transition("f" * 64, ProcessingStatus.FAILED, error_message="boom")

    failed = await ledger.get_read("f" * 64)
    assert failed.error_message == "boom"
    assert failed.processed_at is not None

    message = await ledger.reset_for_retry("f" * 64)
    assert message.content == "Milk 2L"
    assert message.fingerprint == "f" * 64

    entry = await ledger.get_read("f" * 64)
    assert entry.status == ProcessingStatus.PENDING
    assert entry.error_message is None
    assert entry.processed_at is None

    with pytest.raises(InvalidTransition):
        await ledger.reset_for_retry("f" * 64)
    with pytest.raises(LedgerEntryNotFound):
        await ledger.reset_for_retry("0" * 64)


@pytest.mark.asyncio
async def test_list_recent_filters_and_hides_raw_content(session_factory):
    ledger = ProcessingLedger(session_factory)
    await ledger.create_if_absent(_message("a" * 64))
    await ledger.create_if_absent(_message("b" * 64))
    await ledger.transition("a" * 64, ProcessingStatus.FAILED, error_message="x")

    failed = await ledger.list_recent(status=ProcessingStatus.FAILED)
    assert [e.fingerprint for e in failed] == ["a" * 64]
    everything = await ledger.list_recent(limit=10)
    assert [e.fingerprint for e in everything] == ["b" * 64, "a" * 64]
    assert "raw_content" not in everything[0].model_dump()


@pytest.mark.asyncio
async def test_recover_abandoned_fails_unfinished_entries(session_factory):
    ledger = ProcessingLedger(session_factory)
    await ledger.create_if_absent(_message("a" * 64))
    await ledger.create_if_absent(_message("b" * 64))
    await ledger.create_if_absent(_message("c" * 64))
    await ledger.transition("b" * 64, ProcessingStatus.PROCESSING)
    await ledger.transition("c" * 64, ProcessingStatus.FAILED, error_message="old")

    assert await ledger.recover_abandoned() == 2
    for fp in ("a" * 64, "b" * 64):
        entry = await ledger.get_read(fp)
        assert entry.status == ProcessingStatus.FAILED
        assert entry.error_message.startswith("Abandoned")
    assert (await ledger.get_read("c" * 64)).error_message == "old"


@pytest.mark.asyncio
async def test_insert_raises_duplicate_message(session_factory):
    from receipt_intake.core.errors import DuplicateMessage

    ledger = ProcessingLedger(session_factory)
    await ledger.insert(_message())
    with pytest.raises(DuplicateMessage) as exc:
        await ledger.insert(_message())
    assert exc.value.fingerprint == "f" * 64
