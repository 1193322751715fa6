"""Pydantic schemas for request and response models.

Pydantic models are used for validating and serialising data that
crosses a trust boundary: the inbound webhook payload, the structured
output of the generative text service and the read models returned by
the status API.  They are intentionally separate from the SQLAlchemy
models so that, for example, the raw email body stored on a ledger entry
can never leak through a response schema.
"""

from __future__ import annotations

import datetime as dt
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, ConfigDict
from pydantic.alias_generators import to_camel

from .enums import ProcessingStatus
from receipt_intake.utils.helpers import parse_amount, parse_purchase_date


# ---------------------------------------------------------------------------
# Inbound webhook


class InboundEmail(BaseModel):
    """Inbound message as delivered by the mail provider webhook.

    Field aliases follow Mailgun's form field names (``body-plain``,
    ``body-html``); snake_case names are accepted too for JSON callers.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sender: str = ""
    subject: str = ""
    body_plain: Optional[str] = Field(default=None, alias="body-plain")
    body_html: Optional[str] = Field(default=None, alias="body-html")
    timestamp: Optional[str] = None
    token: Optional[str] = None
    signature: Optional[str] = None

    @field_validator("sender", "subject", mode="before")
    def _blank_if_missing(cls, v):
        return "" if v is None else str(v)

    @field_validator("timestamp", "token", "signature", mode="before")
    def _stringify(cls, v):
        # Mailgun posts the timestamp as a number in JSON payloads
        return None if v is None else str(v)


class QueuedMessage(BaseModel):
    """Unit of work moved through the ingestion queue (never persisted)."""

    fingerprint: str
    sender_email: str
    subject: str = ""
    content: str
    received_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


class IngestionOutcome(BaseModel):
    """Webhook response body for an admitted message."""

    status: Literal["queued", "duplicate"]
    fingerprint: str


# ---------------------------------------------------------------------------
# Structured output of the generative text service


class ExtractedLineItem(BaseModel):
    """Line item as returned by the extraction model (camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    description: str = ""
    quantity: Optional[int] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None

    @field_validator("description", mode="before")
    def _clean_description(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("unit_price", "total_price", mode="before")
    def _parse_price(cls, v):
        return parse_amount(v)

    @property
    def is_valid(self) -> bool:
        return bool(self.description) and self.quantity is not None and self.quantity > 0


class ExtractedReceipt(BaseModel):
    """Normalized receipt produced by the extractor."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    merchant_name: Optional[str] = None
    purchase_date: dt.date = Field(default_factory=dt.date.today)
    currency: str = "USD"
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: Optional[float] = None
    items: List[ExtractedLineItem] = Field(min_length=1)

    @field_validator("merchant_name", mode="before")
    def _clean_merchant(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        if not text or text.lower() in {"null", "none", "unknown"}:
            return None
        return text

    @field_validator("purchase_date", mode="before")
    def _default_purchase_date(cls, v):
        return parse_purchase_date(v) or dt.date.today()

    @field_validator("currency", mode="before")
    def _default_currency(cls, v):
        text = str(v).strip().upper() if v is not None else ""
        return text or "USD"

    @field_validator("subtotal", "tax", "total", mode="before")
    def _parse_amounts(cls, v):
        return parse_amount(v)


# ---------------------------------------------------------------------------
# Product matching


class ProductCandidate(BaseModel):
    """Existing, non-draft product considered for matching."""

    id: int
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ProductMatch(BaseModel):
    """Best candidate for an extracted line item."""

    product: ProductCandidate
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str = ""


# ---------------------------------------------------------------------------
# Generative text service accounting


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerationResult(BaseModel):
    text: str
    usage: Optional[TokenUsage] = None
    model: Optional[str] = None


# ---------------------------------------------------------------------------
# API read models


class LedgerEntryRead(BaseModel):
    """Ledger entry as exposed through the status API (no raw content)."""

    id: int
    fingerprint: str
    sender_email: str
    subject: Optional[str] = None
    status: ProcessingStatus
    error_message: Optional[str] = None
    order_id: Optional[int] = None
    processed_at: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class QueueStatus(BaseModel):
    queue_length: int
    is_processing: bool
    capacity: Optional[int] = None


class RetryAccepted(BaseModel):
    message: str = "Email queued for retry"
    fingerprint: str
