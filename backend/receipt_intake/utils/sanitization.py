"""
Input sanitization utilities for inbound email content.

Email bodies are untrusted: they may contain scripts, styles, malformed
markup or entity-encoded text.  Everything here turns them into a single
line of plain text before it is hashed or substituted into a prompt.
"""

import re
from typing import Optional

from bs4 import BeautifulSoup

_WHITESPACE = re.compile(r"\s+")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_NON_TEXT_TAGS = ["script", "style", "head", "meta", "noscript", "template"]


def collapse_whitespace(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip()


def html_to_text(html: Optional[str]) -> str:
    """Convert HTML to plain text.

    Script/style blocks are dropped entirely, remaining tags are replaced by
    spaces and entities (``&amp;``, ``&nbsp;`` ...) are decoded by the parser.
    """
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(_NON_TEXT_TAGS):
        element.decompose()
    text = soup.get_text(separator=" ")
    # Non-breaking spaces decode to \xa0 which \s already covers
    return collapse_whitespace(_CONTROL_CHARS.sub("", text))


def sanitize_email_content(content: Optional[str]) -> str:
    """Return prompt-safe plain text for a (possibly HTML) email body."""
    if not content:
        return ""
    return html_to_text(content)


def sanitize_string(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    # Remove leading/trailing whitespace and control characters
    value = _CONTROL_CHARS.sub("", value.strip())
    return value
