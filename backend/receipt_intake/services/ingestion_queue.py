"""In-process FIFO ingestion queue with a single consumer.

Messages are handed one at a time, in arrival order, to the processor
callback.  The drain task runs only while there is work: ``enqueue``
starts it when no drain is active and it exits once the queue is empty.
The ``active`` flag is set before the task is scheduled so two
back-to-back enqueues can never start two consumers.

State is per-instance and in memory only; messages still queued when the
process stops are recovered from the ledger on the next start.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Optional

from receipt_intake.core.errors import QueueFull
from receipt_intake.models.enums import OverflowPolicy
from receipt_intake.models.schemas import QueuedMessage, QueueStatus

logger = logging.getLogger(__name__)

Processor = Callable[[QueuedMessage], Awaitable[None]]


class IngestionQueue:
    def __init__(
        self,
        processor: Processor,
        capacity: int = 0,
        policy: OverflowPolicy | str = OverflowPolicy.REJECT,
    ) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self._processor = processor
        self.capacity = capacity
        self.policy = OverflowPolicy(policy)
        self._items: Deque[QueuedMessage] = deque()
        self._active = False
        self._closed = False
        self._task: Optional[asyncio.Task[None]] = None
        self._space = asyncio.Condition()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def is_processing(self) -> bool:
        return self._active

    def is_full(self) -> bool:
        return self.capacity > 0 and len(self._items) >= self.capacity

    async def enqueue(self, message: QueuedMessage) -> None:
        """Append ``message`` and make sure a consumer is draining."""
        if self._closed:
            raise QueueFull("Ingestion queue is shutting down")
        if self.is_full():
            if self.policy == OverflowPolicy.REJECT:
                logger.warning("[queue] full (%d); rejecting fingerprint=%s", self.capacity, message.fingerprint)
                raise QueueFull("Ingestion queue is full")
            async with self._space:
                await self._space.wait_for(lambda: self._closed or not self.is_full())
            if self._closed:
                raise QueueFull("Ingestion queue is shutting down")

        self._items.append(message)
        logger.info("[queue] enqueued fingerprint=%s depth=%d", message.fingerprint, len(self._items))
        if not self._active:
            self._active = True
            self._task = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while self._items:
                message = self._items.popleft()
                await self._notify_space()
                try:
                    await self._processor(message)
                except Exception:
                    # One bad message must never stop the loop
                    logger.exception("[queue] processor failed fingerprint=%s", message.fingerprint)
        finally:
            self._active = False
            logger.info("[queue] drained")

    async def _notify_space(self) -> None:
        async with self._space:
            self._space.notify_all()

    def status(self) -> QueueStatus:
        return QueueStatus(
            queue_length=len(self._items),
            is_processing=self._active,
            capacity=self.capacity or None,
        )

    async def join(self) -> None:
        """Wait until every message enqueued so far has been processed."""
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def close(self, drain: bool = True) -> None:
        """Stop accepting messages; optionally wait for the current backlog."""
        self._closed = True
        await self._notify_space()
        if self._task is None or self._task.done():
            return
        if drain:
            await self.join()
        else:
            dropped = len(self._items)
            self._items.clear()
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            if dropped:
                logger.warning("[queue] dropped %d queued messages on shutdown", dropped)
