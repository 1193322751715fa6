"""Receipt extraction service using the generative text service.

This service turns the raw body of an inbound email into an
``ExtractedReceipt``.  The body is sanitized to plain text, substituted
into the extraction prompt from ``receipt_intake.utils.prompts`` and sent
to the model; the JSON it returns is then validated item by item.

Unlike a best-effort extractor, every failure here is raised as an
``ExtractionFailed`` subclass so the pipeline can record the reason on the
ledger entry and the message stays retryable.

Diagnostic logging can be enabled by setting env var EXTRACTION_DEBUG=1.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from receipt_intake.core.config import settings
from receipt_intake.core.errors import (
    EmptyExtractionContent,
    ExtractionFailed,
    ExtractionTimeout,
    GenerationError,
    InvalidStructuredResponse,
    NoValidItems,
)
from receipt_intake.models.schemas import ExtractedLineItem, ExtractedReceipt
from receipt_intake.utils.prompts import build_extraction_prompt
from receipt_intake.utils.sanitization import sanitize_email_content


logger = logging.getLogger(__name__)


class JSONGenerator(Protocol):
    async def generate_json(self, prompt: str, temperature: float = ..., max_tokens: int = ...) -> Any: ...


class ReceiptExtractor:
    """Extract structured receipt details from email content."""

    def __init__(
        self,
        client: JSONGenerator,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.client = client
        self.temperature = settings.EXTRACTION_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.EXTRACTION_MAX_OUTPUT_TOKENS
        self.timeout_seconds = timeout_seconds or settings.EXTRACTION_TIMEOUT_SECONDS
        self.debug: bool = os.getenv("EXTRACTION_DEBUG", "0").lower() in {"1", "true", "yes"}
        if self.debug:
            logger.info(
                "[extraction:init] temperature=%s max_tokens=%s timeout=%ss",
                self.temperature,
                self.max_tokens,
                self.timeout_seconds,
            )

    async def extract(self, content: str) -> ExtractedReceipt:
        sanitized = sanitize_email_content(content)
        if not sanitized:
            raise EmptyExtractionContent("Receipt extraction failed: empty email content after sanitization")

        prompt = build_extraction_prompt(sanitized)
        if self.debug:
            logger.info("[extraction] prompt_chars=%d", len(prompt))

        try:
            payload = await asyncio.wait_for(
                self.client.generate_json(prompt, temperature=self.temperature, max_tokens=self.max_tokens),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ExtractionTimeout(
                f"Receipt extraction failed: generative text service timed out after {self.timeout_seconds}s"
            ) from exc
        except InvalidStructuredResponse as exc:
            raise InvalidStructuredResponse(f"Receipt extraction failed: invalid structured response ({exc})") from exc
        except GenerationError as exc:
            raise ExtractionFailed(f"Receipt extraction failed: {exc}") from exc

        receipt = self.normalize(payload)
        logger.info(
            "[extraction] parsed merchant=%s items=%d date=%s",
            receipt.merchant_name,
            len(receipt.items),
            receipt.purchase_date.isoformat(),
        )
        return receipt

    def normalize(self, payload: Any) -> ExtractedReceipt:
        """Validate a decoded model payload into an ``ExtractedReceipt``.

        Items with a blank description, a missing or non-positive quantity
        or an unparseable shape are dropped.
        """
        if not isinstance(payload, dict):
            raise InvalidStructuredResponse(
                "Receipt extraction failed: invalid structured response (expected a JSON object)"
            )

        raw_items = payload.get("items")
        items: list[ExtractedLineItem] = []
        for raw in raw_items if isinstance(raw_items, list) else []:
            if not isinstance(raw, dict):
                continue
            try:
                item = ExtractedLineItem.model_validate(raw)
            except ValidationError:
                if self.debug:
                    logger.warning("[extraction] dropping malformed item %r", raw)
                continue
            if item.is_valid:
                items.append(item)

        if not items:
            raise NoValidItems("Receipt extraction failed: no valid items found")

        fields = {k: v for k, v in payload.items() if k != "items"}
        try:
            return ExtractedReceipt.model_validate({**fields, "items": items})
        except ValidationError as exc:
            raise InvalidStructuredResponse(
                f"Receipt extraction failed: invalid structured response ({exc.error_count()} errors)"
            ) from exc
