"""Processing ledger: the durable per-fingerprint record of every message.

The ledger is the single source of truth for "have we seen this message
and what happened to it".  Deduplication relies on the unique constraint
on ``fingerprint``: ``create_if_absent`` simply inserts and treats an
integrity error on an existing fingerprint as a duplicate, which keeps
dedup atomic even when the same delivery arrives concurrently.

Status changes are conditional updates (``WHERE status = <expected>``) so
two writers can never both win the same transition.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import defer

from receipt_intake.core.errors import DuplicateMessage, InvalidTransition, LedgerEntryNotFound
from receipt_intake.models.enums import ProcessingStatus
from receipt_intake.models.schemas import LedgerEntryRead, QueuedMessage
from receipt_intake.models.tables import EmailProcessingLog

logger = logging.getLogger(__name__)

# Forward-only lifecycle plus the manual FAILED -> PENDING reset.
ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.PENDING: frozenset({ProcessingStatus.PROCESSING, ProcessingStatus.FAILED}),
    ProcessingStatus.PROCESSING: frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}),
    ProcessingStatus.FAILED: frozenset({ProcessingStatus.PENDING}),
}

MAX_LIST_LIMIT = 500
ABANDONED_MESSAGE = "Abandoned: process restarted before processing finished"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def can_transition(current: ProcessingStatus, new_status: ProcessingStatus) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current, frozenset())


class ProcessingLedger:
    """Async repository over ``email_processing_logs``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(self, message: QueuedMessage) -> None:
        """Insert a PENDING entry; raise ``DuplicateMessage`` for a known fingerprint."""
        async with self._session_factory() as session:
            session.add(
                EmailProcessingLog(
                    fingerprint=message.fingerprint,
                    sender_email=message.sender_email,
                    subject=message.subject,
                    raw_content=message.content,
                    status=ProcessingStatus.PENDING,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                if await self.get(message.fingerprint) is None:
                    raise
                raise DuplicateMessage(message.fingerprint)
        logger.info("[ledger] created fingerprint=%s status=PENDING", message.fingerprint)

    async def create_if_absent(self, message: QueuedMessage) -> bool:
        """Insert a PENDING entry; return False (and write nothing) for a known fingerprint."""
        try:
            await self.insert(message)
        except DuplicateMessage:
            logger.info("[ledger] duplicate fingerprint=%s", message.fingerprint)
            return False
        return True

    async def get(self, fingerprint: str) -> Optional[EmailProcessingLog]:
        """Return the full entry (raw content included) or ``None``.

        Internal use only; API callers go through :meth:`get_read`.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(EmailProcessingLog).where(EmailProcessingLog.fingerprint == fingerprint)
            )
            return result.scalar_one_or_none()

    async def get_read(self, fingerprint: str) -> LedgerEntryRead:
        """Return the entry stripped of raw content; raise if unknown."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(EmailProcessingLog)
                .options(defer(EmailProcessingLog.raw_content))
                .where(EmailProcessingLog.fingerprint == fingerprint)
            )
            entry = result.scalar_one_or_none()
            if entry is None:
                raise LedgerEntryNotFound(fingerprint)
            return LedgerEntryRead.model_validate(entry)

    async def list_recent(self, status: Optional[ProcessingStatus] = None, limit: int = 50) -> List[LedgerEntryRead]:
        """Newest entries first, optionally filtered by status; never loads raw content."""
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        stmt = select(EmailProcessingLog).options(defer(EmailProcessingLog.raw_content))
        if status is not None:
            stmt = stmt.where(EmailProcessingLog.status == status)
        stmt = stmt.order_by(EmailProcessingLog.created_at.desc(), EmailProcessingLog.id.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [LedgerEntryRead.model_validate(e) for e in result.scalars().all()]

    async def transition(
        self,
        fingerprint: str,
        new_status: ProcessingStatus,
        *,
        error_message: Optional[str] = None,
        order_id: Optional[int] = None,
    ) -> None:
        """Move an entry to ``new_status`` following the lifecycle rules.

        ``error_message`` is only kept on FAILED and ``order_id`` only on
        COMPLETED; ``processed_at`` is stamped on terminal states.
        """
        if new_status == ProcessingStatus.COMPLETED and order_id is None:
            raise InvalidTransition("COMPLETED requires an order id")

        async with self._session_factory() as session:
            current = await self._current_status(session, fingerprint)
            if not can_transition(current, new_status):
                raise InvalidTransition(
                    f"Cannot move {fingerprint} from {current.value} to {new_status.value}"
                )
            values = {
                "status": new_status,
                "error_message": (error_message or "Unknown error") if new_status == ProcessingStatus.FAILED else None,
                "order_id": order_id if new_status == ProcessingStatus.COMPLETED else None,
                "processed_at": _utcnow() if new_status.is_terminal else None,
            }
            await self._apply(session, fingerprint, current, values)
        logger.info("[ledger] fingerprint=%s %s -> %s", fingerprint, current.value, new_status.value)

    async def reset_for_retry(self, fingerprint: str) -> QueuedMessage:
        """FAILED -> PENDING (clearing the error) and rebuild the queued message."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(EmailProcessingLog).where(EmailProcessingLog.fingerprint == fingerprint)
            )
            entry = result.scalar_one_or_none()
            if entry is None:
                raise LedgerEntryNotFound(fingerprint)
            if entry.status != ProcessingStatus.FAILED:
                raise InvalidTransition("Email is not in failed state")
            message = QueuedMessage(
                fingerprint=entry.fingerprint,
                sender_email=entry.sender_email,
                subject=entry.subject or "",
                content=entry.raw_content,
                received_at=entry.created_at,
            )
            await self._apply(
                session,
                fingerprint,
                ProcessingStatus.FAILED,
                {"status": ProcessingStatus.PENDING, "error_message": None, "processed_at": None},
            )
        logger.info("[ledger] fingerprint=%s reset FAILED -> PENDING for retry", fingerprint)
        return message

    async def recover_abandoned(self) -> int:
        """Fail entries a previous process left PENDING/PROCESSING so they become retryable."""
        stmt = (
            update(EmailProcessingLog)
            .where(EmailProcessingLog.status.in_([ProcessingStatus.PENDING, ProcessingStatus.PROCESSING]))
            .values(status=ProcessingStatus.FAILED, error_message=ABANDONED_MESSAGE, processed_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            recovered = result.rowcount or 0
            await session.commit()
        if recovered:
            logger.warning("[ledger] marked %d abandoned entries as FAILED", recovered)
        return recovered

    # ------------------------------------------------------------------
    # internals

    async def _current_status(self, session: AsyncSession, fingerprint: str) -> ProcessingStatus:
        result = await session.execute(
            select(EmailProcessingLog.status).where(EmailProcessingLog.fingerprint == fingerprint)
        )
        current = result.scalar_one_or_none()
        if current is None:
            raise LedgerEntryNotFound(fingerprint)
        return ProcessingStatus(current)

    async def _apply(self, session: AsyncSession, fingerprint: str, expected: ProcessingStatus, values: dict) -> None:
        stmt = (
            update(EmailProcessingLog)
            .where(EmailProcessingLog.fingerprint == fingerprint, EmailProcessingLog.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            await session.rollback()
            raise InvalidTransition(f"Ledger entry {fingerprint} changed concurrently")
        await session.commit()
