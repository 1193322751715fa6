"""Enumeration types used throughout the receipt intake pipeline.

Enumerations make it easier to constrain the values that can be stored
in the database or passed through the API.  When modifying these enums
you should update the corresponding database columns (and the Alembic
migration) so that new values are accepted where appropriate.
"""

from enum import Enum


class ProcessingStatus(str, Enum):
    """Lifecycle states of a processing ledger entry."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DUPLICATE = "DUPLICATE"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED, ProcessingStatus.DUPLICATE)


class OrderSource(str, Enum):
    """Where an order was created from."""

    MANUAL = "MANUAL"
    EMAIL = "EMAIL"
    API = "API"


class MatchStrategy(str, Enum):
    """Product matching strategies supported by the resolver."""

    TOKEN_SET = "token_set"
    LLM = "llm"


class OverflowPolicy(str, Enum):
    """What the ingestion queue does when it is at capacity."""

    REJECT = "reject"
    BLOCK = "block"
