"""
Email body text helpers.
"""

import re
from datetime import UTC, datetime

from inbox_scheduler.config import settings

_WHITESPACE_RE = re.compile(r"\s+")
_REPLY_PREFIX_RE = re.compile(r"^\s*(re\s*:\s*)+", re.IGNORECASE)


def sanitize_content(content: str | None) -> str:
    """Collapse CR/LF and whitespace runs into single spaces and trim."""
    if not content:
        return ""
    content = content.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    return _WHITESPACE_RE.sub(" ", content).strip()


def clean_text_content(
    content: str | None,
    max_length: int | None = None,
    trim: bool = True,
    lowercase: bool = False,
    sanitize: bool = True,
) -> str:
    """
    Normalize free text. Truncation to ``max_length`` is applied last.

    A ``max_length`` of 0 disables truncation.
    """
    if max_length is None:
        max_length = settings.BODY_MAX_LENGTH

    content = content or ""
    if trim:
        content = content.strip()
    if lowercase:
        content = content.lower()
    if sanitize:
        content = sanitize_content(content)
    if max_length > 0:
        content = content[:max_length]
    return content


def format_attribution_date(timestamp: datetime) -> str:
    """``Fri, Oct 17, 2025, 3:04 PM`` in UTC."""
    ts = timestamp.astimezone(UTC) if timestamp.tzinfo else timestamp.replace(tzinfo=UTC)
    hour = ts.hour % 12 or 12
    return f"{ts:%a, %b} {ts.day}, {ts.year}, {hour}:{ts:%M} {ts:%p}"


def attribution_prefix(sender_address: str, timestamp: datetime, sender_name: str | None = None) -> str:
    """Canonical ``<name> <<address>> wrote on <date>:`` line, lowercased."""
    name = sender_name or sender_address
    return f"{name} <{sender_address}> wrote on {format_attribution_date(timestamp)}:".lower().strip()


def build_quoted_body(
    raw_body: str | None,
    sender_address: str,
    timestamp: datetime,
    sender_name: str | None = None,
    max_length: int | None = None,
) -> str:
    """Attribution prefix followed by the cleaned body; only the body is truncated."""
    prefix = attribution_prefix(sender_address, timestamp, sender_name)
    body = clean_text_content(raw_body, max_length=max_length)
    return f"{prefix} {body}" if body else prefix


def strip_reply_prefix(subject: str | None) -> str:
    return _REPLY_PREFIX_RE.sub("", subject or "").strip()


def reply_subject(subject: str | None) -> str:
    """``Re: <subject>`` without stacking repeated ``Re:`` prefixes."""
    return f"Re: {strip_reply_prefix(subject)}"
