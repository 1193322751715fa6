"""Application configuration.

This module defines a ``Settings`` class that reads configuration values
from environment variables and ``.env`` files and provides sensible
defaults.  ``.env`` support is implemented by loading files from the
repository root in a defined order.  You can override any value via
environment variables.
"""

from __future__ import annotations

import os
from email.utils import parseaddr
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# -----------------------------------------------------------------------------
# .env loading
#
# Prefer a .env in the repository root but allow fallback to whatever
# python-dotenv discovers from the current working directory.  As a last
# resort, a .env alongside the backend directory may be used.  Files are
# loaded in order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

_LOCAL_ENV = (_THIS_FILE.parent.parent.parent / ".env").as_posix()
if os.path.exists(_LOCAL_ENV) and _LOCAL_ENV not in _candidate_envs:
    _candidate_envs.append(_LOCAL_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from the environment with sensible defaults.  Any
    attribute defined here can be overridden by setting the corresponding
    environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="allow",
    )

    # API Settings
    PROJECT_NAME: str = "Receipt Intake"
    ENVIRONMENT: str = Field(default="development")

    # Database
    DATABASE_URL: Optional[str] = Field(default=None)
    # Dev DB fallback (fail fast by default)
    DB_DEV_FALLBACK_SQLITE: bool = Field(default=False)

    # Generative text service (OpenAI)
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    OPENAI_BASE_URL: Optional[str] = Field(default=None)
    EXTRACTION_MODEL: str = Field(default="gpt-4o-mini")
    EXTRACTION_TEMPERATURE: float = Field(default=0.1)
    EXTRACTION_MAX_OUTPUT_TOKENS: int = Field(default=1024)
    # A hung extraction call stalls the whole queue, so it is always bounded.
    EXTRACTION_TIMEOUT_SECONDS: float = Field(default=60.0)

    # Inbound email webhook
    # Comma separated list of sender addresses admitted into the pipeline.
    EMAIL_ALLOWED_SENDERS: str = Field(default="")
    # When unset, signature verification is disabled (logged loudly at startup).
    MAILGUN_WEBHOOK_SECRET: Optional[str] = Field(default=None)

    # Per-sender rate limiting (fixed window)
    SENDER_RATE_LIMIT_ENABLED: bool = Field(default=True)
    SENDER_RATE_LIMIT_MAX: int = Field(default=10)
    SENDER_RATE_LIMIT_WINDOW_SECONDS: int = Field(default=3600)

    # Ingestion queue
    # 0 means unbounded.
    QUEUE_MAX_SIZE: int = Field(default=100)
    # "reject" answers 503 when full, "block" waits for space.
    QUEUE_OVERFLOW_POLICY: str = Field(default="reject")

    # Ledger
    LEDGER_RECOVER_ON_STARTUP: bool = Field(default=True)

    # Product matching
    MATCH_STRATEGY: str = Field(default="token_set")
    MATCH_THRESHOLD: float = Field(default=0.6)
    MATCH_MAX_OUTPUT_TOKENS: int = Field(default=512)
    PRODUCT_CACHE_TTL_SECONDS: float = Field(default=300.0)

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)


# Instantiate global settings
settings = Settings()


def normalize_sender(value: str | None) -> str:
    """Return the bare, lowercased address from a sender header value."""
    if not value:
        return ""
    _, address = parseaddr(value)
    return (address or value).strip().lower()


def get_allowed_senders(source: Settings | None = None) -> frozenset[str]:
    """Return the normalized sender allow-list.

    ``EMAIL_ALLOWED_SENDERS`` is comma separated; blanks are ignored.
    """
    cfg = source or settings
    raw = cfg.EMAIL_ALLOWED_SENDERS or ""
    return frozenset(normalize_sender(s) for s in raw.split(",") if s.strip())
