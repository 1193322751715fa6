from __future__ import annotations

import asyncio

import pytest

from receipt_intake.core.errors import QueueFull
from receipt_intake.models.enums import OverflowPolicy
from receipt_intake.models.schemas import QueuedMessage
from receipt_intake.services.ingestion_queue import IngestionQueue


def _msg(n: int) -> QueuedMessage:
    return QueuedMessage(fingerprint=f"{n:064d}", sender_email="a@example.com", content=f"body {n}")


@pytest.mark.asyncio
async def test_messages_processed_in_fifo_order_by_one_consumer():
    seen = []
    running = 0
    max_running = 0

    async def processor(message):
        nonlocal running, max_running
        running += 1
        max_running = max(max_running, running)
        await asyncio.sleep(0)
        seen.append(message.content)
        running -= 1

    queue = IngestionQueue(processor)
    for n in range(5):
        await queue.enqueue(_msg(n))
    assert queue.is_processing is True
    await queue.join()

    assert seen == [f"body {n}" for n in range(5)]
    assert max_running == 1
    status = queue.status()
    assert status.queue_length == 0
    assert status.is_processing is False


@pytest.mark.asyncio
async def test_failing_message_does_not_stop_loop():
    seen = []

    async def processor(message):
        if message.content == "body 1":
            raise RuntimeError("boom")
        seen.append(message.content)

    queue = IngestionQueue(processor)
    for n in range(3):
        await queue.enqueue(_msg(n))
    await queue.join()
    assert seen == ["body 0", "body 2"]


@pytest.mark.asyncio
async def test_loop_restarts_after_draining():
    seen = []

    async def processor(message):
        seen.append(message.content)

    queue = IngestionQueue(processor)
    await queue.enqueue(_msg(0))
    await queue.join()
    assert queue.is_processing is False
    await queue.enqueue(_msg(1))
    await queue.join()
    assert seen == ["body 0", "body 1"]


@pytest.mark.asyncio
async def test_reject_policy_raises_when_full():
    gate = asyncio.Event()

    async def processor(message):
        await gate.wait()

    queue = IngestionQueue(processor, capacity=1, policy=OverflowPolicy.REJECT)
    await queue.enqueue(_msg(0))
    await asyncio.sleep(0)  # consumer takes message 0
    await queue.enqueue(_msg(1))
    with pytest.raises(QueueFull):
        await queue.enqueue(_msg(2))
    assert queue.status().capacity == 1
    gate.set()
    await queue.join()


@pytest.mark.asyncio
async def test_block_policy_waits_for_space():
    gate = asyncio.Event()
    seen = []

    async def processor(message):
        await gate.wait()
        seen.append(message.content)

    queue = IngestionQueue(processor, capacity=1, policy="block")
    await queue.enqueue(_msg(0))
    await asyncio.sleep(0)
    await queue.enqueue(_msg(1))

    blocked = asyncio.create_task(queue.enqueue(_msg(2)))
    await asyncio.sleep(0)
    assert not blocked.done()
    gate.set()
    await blocked
    await queue.join()
    assert seen == ["body 0", "body 1", "body 2"]


@pytest.mark.asyncio
async def test_close_without_drain_drops_backlog():
    gate = asyncio.Event()

    async def processor(message):
        await gate.wait()

    queue = IngestionQueue(processor)
    await queue.enqueue(_msg(0))
    await queue.enqueue(_msg(1))
    await queue.close(drain=False)
    assert queue.status().queue_length == 0
    with pytest.raises(QueueFull):
        await queue.enqueue(_msg(2))
