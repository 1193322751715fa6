"""Admission control for inbound email.

The guard is the trust boundary of the pipeline.  It decides whether a
webhook delivery may enter at all and computes the fingerprint that every
later step uses as its idempotency key.  Checks run in this order:

1. webhook signature (HMAC-SHA256 over ``timestamp + token``) when a
   secret is configured
2. sender allow-list
3. per-sender rate limit (allow-listed senders only)
4. non-empty content (plain body, else text derived from the HTML body)

Rejected messages never touch the ledger or the queue.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from receipt_intake.core.config import normalize_sender
from receipt_intake.core.errors import EmptyContent, InvalidSignature, RateLimited, SenderNotAllowed
from receipt_intake.models.schemas import InboundEmail, QueuedMessage
from receipt_intake.services.rate_limiter import SenderRateLimiter
from receipt_intake.utils.sanitization import collapse_whitespace, html_to_text, sanitize_string

logger = logging.getLogger(__name__)


def compute_signature(secret: str, timestamp: str, token: str) -> str:
    """Return the hex HMAC-SHA256 of ``timestamp + token`` keyed by ``secret``."""
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=f"{timestamp}{token}".encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()


def compute_fingerprint(content: str, subject: str, sender_email: str) -> str:
    """Deterministic SHA-256 over normalized content, subject and sender."""
    normalized = (
        collapse_whitespace(content)
        + collapse_whitespace(subject)
        + normalize_sender(sender_email)
    )
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def select_content(inbound: InboundEmail) -> tuple[str, str]:
    """Return ``(raw_body, text)`` for the body variant used downstream.

    The plain-text body wins; otherwise the HTML body is used and its text
    is derived for the emptiness check and the fingerprint.
    """
    plain = inbound.body_plain or ""
    if plain.strip():
        return plain, collapse_whitespace(plain)
    html = inbound.body_html or ""
    return html, html_to_text(html)


@dataclass(frozen=True)
class Admission:
    """An admitted message and its fingerprint."""

    message: QueuedMessage
    fingerprint: str


class EmailGuard:
    """Validate inbound deliveries and build queued messages."""

    def __init__(
        self,
        allowed_senders: Iterable[str],
        webhook_secret: Optional[str] = None,
        rate_limiter: Optional[SenderRateLimiter] = None,
    ) -> None:
        self.allowed_senders = frozenset(normalize_sender(s) for s in allowed_senders if s)
        self.webhook_secret = webhook_secret or None
        self.rate_limiter = rate_limiter
        if not self.webhook_secret:
            logger.warning(
                "[guard] signature verification disabled: MAILGUN_WEBHOOK_SECRET is not set; "
                "any caller that knows an allow-listed sender can submit mail"
            )
        if not self.allowed_senders:
            logger.warning("[guard] EMAIL_ALLOWED_SENDERS is empty; every inbound email will be rejected")

    @property
    def signature_verification_enabled(self) -> bool:
        return self.webhook_secret is not None

    def verify_signature(self, inbound: InboundEmail) -> None:
        if not self.signature_verification_enabled:
            return
        if not (inbound.timestamp and inbound.token and inbound.signature):
            raise InvalidSignature("Missing signature fields")
        expected = compute_signature(self.webhook_secret, inbound.timestamp, inbound.token)  # type: ignore[arg-type]
        if not hmac.compare_digest(expected, inbound.signature):
            raise InvalidSignature("Invalid signature")

    def is_sender_allowed(self, sender: str) -> bool:
        normalized = normalize_sender(sender)
        return bool(normalized) and normalized in self.allowed_senders

    def release_quota(self, sender: str) -> None:
        """Refund the rate-limit hit of an admission that turned out to be a redelivery."""
        if self.rate_limiter is not None:
            self.rate_limiter.release(normalize_sender(sender))

    def admit(self, inbound: InboundEmail) -> Admission:
        """Run every admission check; raise an ``AdmissionRejected`` subclass on failure."""
        self.verify_signature(inbound)

        sender = normalize_sender(inbound.sender)
        if not self.is_sender_allowed(sender):
            logger.warning("[guard] sender not allowed: %s", sender or "<missing>")
            raise SenderNotAllowed("Sender not allowed")

        if self.rate_limiter is not None and not self.rate_limiter.hit(sender):
            raise RateLimited("Rate limit exceeded", retry_after=self.rate_limiter.retry_after())

        raw_body, text = select_content(inbound)
        if not text:
            logger.warning("[guard] empty email content from %s", sender)
            raise EmptyContent("Empty email content")

        subject = sanitize_string(inbound.subject) or ""
        fingerprint = compute_fingerprint(text, subject, sender)
        message = QueuedMessage(
            fingerprint=fingerprint,
            sender_email=sender,
            subject=subject,
            content=raw_body,
        )
        return Admission(message=message, fingerprint=fingerprint)
