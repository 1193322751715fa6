"""Miscellaneous helper functions."""

from __future__ import annotations

import datetime as dt
import re
from typing import Any, Optional

_AMOUNT_NOISE = re.compile(r"[^\d.\-]")


def parse_iso_datetime(value: str | None) -> Optional[dt.datetime]:
    """Parse an ISO8601 datetime string into a :class:`datetime` object.

    Some data sources provide timestamps that end with a lowercase ``z``
    instead of the canonical ``Z``. This function normalises that case and
    returns ``None`` if the value cannot be parsed.
    """
    if not value:
        return None
    try:
        if value.endswith("z"):
            value = value[:-1] + "Z"
        return dt.datetime.fromisoformat(value)
    except ValueError:
        return None


def parse_purchase_date(value: Any) -> Optional[dt.date]:
    """Coerce a model-provided purchase date into a :class:`date`.

    Accepts ``date``/``datetime`` objects, ``YYYY-MM-DD`` strings and full
    ISO8601 timestamps.  Returns ``None`` for blanks and anything
    unparseable so callers can apply their own default.
    """
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    text = str(value).strip()
    if not text or text.lower() in {"null", "none"}:
        return None
    try:
        return dt.date.fromisoformat(text[:10])
    except ValueError:
        parsed = parse_iso_datetime(text)
        return parsed.date() if parsed else None


def parse_amount(value: Any) -> Optional[float]:
    """Parse a monetary amount, tolerating currency symbols and separators.

    ``"$1,234.50"`` becomes ``1234.5``; blanks and garbage become ``None``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = _AMOUNT_NOISE.sub("", str(value).replace(",", ""))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None
