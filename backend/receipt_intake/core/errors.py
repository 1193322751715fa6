"""Domain exceptions for the email receipt pipeline.

Admission errors carry the HTTP status the webhook answers with; they are
raised synchronously while a message is being admitted and never reach
the ledger.  Everything raised inside the worker loop (extraction,
resolution, persistence) is caught per message and recorded on the
ledger entry as ``FAILED``.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


# ---------------------------------------------------------------------------
# Admission (webhook time)


class AdmissionRejected(PipelineError):
    """An inbound message may not enter the pipeline."""

    status_code: int = 400
    reason: str = "rejected"


class InvalidSignature(AdmissionRejected):
    status_code = 401
    reason = "Invalid signature"


class SenderNotAllowed(AdmissionRejected):
    status_code = 403
    reason = "Sender not allowed"


class EmptyContent(AdmissionRejected):
    status_code = 400
    reason = "Empty email content"


class RateLimited(AdmissionRejected):
    status_code = 429
    reason = "Rate limit exceeded"

    def __init__(self, message: str = "", retry_after: int = 60) -> None:
        super().__init__(message or self.reason)
        self.retry_after = retry_after


class DuplicateMessage(PipelineError):
    """The fingerprint is already known to the ledger."""

    def __init__(self, fingerprint: str) -> None:
        super().__init__(f"Email already processed: {fingerprint}")
        self.fingerprint = fingerprint


class QueueFull(PipelineError):
    """The ingestion queue is at capacity and the policy is to reject."""

    status_code = 503


# ---------------------------------------------------------------------------
# Ledger


class LedgerEntryNotFound(PipelineError):
    status_code = 404

    def __init__(self, fingerprint: str) -> None:
        super().__init__("Email processing log not found")
        self.fingerprint = fingerprint


class InvalidTransition(PipelineError):
    status_code = 400


# ---------------------------------------------------------------------------
# Worker loop


class GenerationError(PipelineError):
    """The generative text service failed or returned nothing usable."""


class ExtractionFailed(PipelineError):
    """Receipt extraction did not produce a usable receipt."""


class EmptyExtractionContent(ExtractionFailed):
    pass


class InvalidStructuredResponse(ExtractionFailed):
    pass


class NoValidItems(ExtractionFailed):
    pass


class ExtractionTimeout(ExtractionFailed):
    pass


class ResolutionFailed(PipelineError):
    """Storage error while matching or creating a product."""


class PersistenceFailed(PipelineError):
    """Storage error while persisting the draft order."""
