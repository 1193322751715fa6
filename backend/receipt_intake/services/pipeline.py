"""Email receipt pipeline: wires guard, ledger, queue and workers together.

``ingest`` runs at webhook time (admission + ledger insert + enqueue) and
``process`` runs on the queue's single consumer (extract + assemble).  The
pipeline object is created once in the app lifespan and stored on
``app.state``.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from receipt_intake.core.config import Settings, get_allowed_senders
from receipt_intake.core.errors import InvalidTransition, PipelineError, QueueFull
from receipt_intake.core.observability import sentry_breadcrumb, sentry_capture
from receipt_intake.models.enums import MatchStrategy, OverflowPolicy, ProcessingStatus
from receipt_intake.models.schemas import (
    InboundEmail,
    IngestionOutcome,
    LedgerEntryRead,
    QueuedMessage,
    QueueStatus,
)
from receipt_intake.services.email_guard import EmailGuard
from receipt_intake.services.extraction_service import ReceiptExtractor
from receipt_intake.services.ingestion_queue import IngestionQueue
from receipt_intake.services.ledger import ProcessingLedger
from receipt_intake.services.order_assembler import DraftOrderAssembler
from receipt_intake.services.product_matching import (
    LLMProductMatcher,
    ProductCatalog,
    ProductResolver,
    TokenSetMatcher,
)
from receipt_intake.services.rate_limiter import SenderRateLimiter
from receipt_intake.services.text_generation import GenerativeTextClient

logger = logging.getLogger(__name__)

QUEUE_FULL_MESSAGE = "Ingestion queue full; retry manually"


class EmailPipeline:
    def __init__(
        self,
        guard: EmailGuard,
        ledger: ProcessingLedger,
        extractor: ReceiptExtractor,
        assembler: DraftOrderAssembler,
        capacity: int = 0,
        overflow_policy: OverflowPolicy | str = OverflowPolicy.REJECT,
        text_client: Any = None,
    ) -> None:
        self.guard = guard
        self.ledger = ledger
        self.extractor = extractor
        self.assembler = assembler
        self.queue = IngestionQueue(self.process, capacity=capacity, policy=overflow_policy)
        self._text_client = text_client

    async def ingest(self, inbound: InboundEmail) -> IngestionOutcome:
        """Admit, record and enqueue one inbound email.

        Raises an ``AdmissionRejected`` subclass for rejected mail and
        ``QueueFull`` when the queue refuses the message.
        """
        admission = self.guard.admit(inbound)
        message = admission.message
        fingerprint = admission.fingerprint

        if not await self.ledger.create_if_absent(message):
            self.guard.release_quota(message.sender_email)
            logger.info("[ingest] duplicate fingerprint=%s", fingerprint)
            return IngestionOutcome(status="duplicate", fingerprint=fingerprint)

        try:
            await self.queue.enqueue(message)
        except QueueFull:
            await self.ledger.transition(fingerprint, ProcessingStatus.FAILED, error_message=QUEUE_FULL_MESSAGE)
            raise

        sentry_breadcrumb(category="ingest", message="queued", data={"fingerprint": fingerprint})
        logger.info("[ingest] queued fingerprint=%s sender=%s", fingerprint, message.sender_email)
        return IngestionOutcome(status="queued", fingerprint=fingerprint)

    async def process(self, message: QueuedMessage) -> None:
        """Run one message through extraction and assembly.

        Every failure is recorded on the ledger entry; nothing propagates.
        """
        fingerprint = message.fingerprint
        try:
            await self.ledger.transition(fingerprint, ProcessingStatus.PROCESSING)
        except InvalidTransition as exc:
            # entry already left PENDING; nothing to record
            logger.warning("[process] skipped fingerprint=%s: %s", fingerprint, exc)
            return
        except Exception as exc:
            logger.exception("[process] could not start fingerprint=%s", fingerprint)
            sentry_capture(exc)
            await self._fail(fingerprint, str(exc) or type(exc).__name__)
            return

        try:
            receipt = await self.extractor.extract(message.content)
            order_id = await self.assembler.assemble(receipt, fingerprint, message.sender_email)
            await self.ledger.transition(fingerprint, ProcessingStatus.COMPLETED, order_id=order_id)
        except Exception as exc:
            logger.warning("[process] failed fingerprint=%s error=%s", fingerprint, exc)
            if not isinstance(exc, PipelineError):
                sentry_capture(exc)
            await self._fail(fingerprint, str(exc) or type(exc).__name__)
            return

        logger.info("[process] completed fingerprint=%s order=%s", fingerprint, order_id)

    async def _fail(self, fingerprint: str, error_message: str) -> None:
        try:
            await self.ledger.transition(fingerprint, ProcessingStatus.FAILED, error_message=error_message)
        except Exception:
            logger.exception("[process] could not record failure fingerprint=%s", fingerprint)

    async def retry(self, fingerprint: str) -> QueuedMessage:
        """Reset a FAILED entry and put it at the back of the queue."""
        message = await self.ledger.reset_for_retry(fingerprint)
        try:
            await self.queue.enqueue(message)
        except QueueFull:
            await self.ledger.transition(fingerprint, ProcessingStatus.FAILED, error_message=QUEUE_FULL_MESSAGE)
            raise
        logger.info("[retry] requeued fingerprint=%s", fingerprint)
        return message

    def status(self) -> QueueStatus:
        return self.queue.status()

    async def get_entry(self, fingerprint: str) -> LedgerEntryRead:
        return await self.ledger.get_read(fingerprint)

    async def list_entries(self, status: Optional[ProcessingStatus] = None, limit: int = 50) -> List[LedgerEntryRead]:
        return await self.ledger.list_recent(status=status, limit=limit)

    async def start(self, recover: bool = True) -> int:
        """Fail entries abandoned by a previous process; return how many."""
        if not recover:
            return 0
        return await self.ledger.recover_abandoned()

    async def shutdown(self) -> None:
        await self.queue.close(drain=False)
        close = getattr(self._text_client, "close", None)
        if close is not None:
            await close()


def build_resolver(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    text_client: Any,
) -> ProductResolver:
    catalog = ProductCatalog(session_factory, ttl_seconds=settings.PRODUCT_CACHE_TTL_SECONDS)
    strategy = MatchStrategy(settings.MATCH_STRATEGY.lower())
    if strategy == MatchStrategy.LLM:
        return LLMProductMatcher(
            catalog,
            text_client,
            threshold=settings.MATCH_THRESHOLD,
            max_tokens=settings.MATCH_MAX_OUTPUT_TOKENS,
        )
    return TokenSetMatcher(catalog, threshold=settings.MATCH_THRESHOLD)


def build_pipeline(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    text_client: Any = None,
) -> EmailPipeline:
    """Construct the pipeline and all collaborators from settings."""
    if text_client is None:
        text_client = GenerativeTextClient(
            model=settings.EXTRACTION_MODEL,
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.OPENAI_BASE_URL,
        )

    rate_limiter = None
    if settings.SENDER_RATE_LIMIT_ENABLED:
        rate_limiter = SenderRateLimiter(
            settings.SENDER_RATE_LIMIT_MAX,
            settings.SENDER_RATE_LIMIT_WINDOW_SECONDS,
        )
    guard = EmailGuard(
        get_allowed_senders(settings),
        webhook_secret=settings.MAILGUN_WEBHOOK_SECRET,
        rate_limiter=rate_limiter,
    )
    extractor = ReceiptExtractor(
        text_client,
        temperature=settings.EXTRACTION_TEMPERATURE,
        max_tokens=settings.EXTRACTION_MAX_OUTPUT_TOKENS,
        timeout_seconds=settings.EXTRACTION_TIMEOUT_SECONDS,
    )
    resolver = build_resolver(settings, session_factory, text_client)
    assembler = DraftOrderAssembler(session_factory, resolver)
    return EmailPipeline(
        guard=guard,
        ledger=ProcessingLedger(session_factory),
        extractor=extractor,
        assembler=assembler,
        capacity=settings.QUEUE_MAX_SIZE,
        overflow_policy=settings.QUEUE_OVERFLOW_POLICY.lower(),
        text_client=text_client,
    )
