"""Utility functions for time handling and text sanitization."""

from datetime import datetime, timezone

import bleach


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalise an incoming datetime to naive UTC for comparison with stored values."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def sanitize_question_text(text: str) -> str:
    """Sanitize question text to prevent XSS attacks.

    Allows basic formatting tags but removes script/dangerous content.
    """
    allowed_tags = ['b', 'i', 'u', 'em', 'strong', 'p', 'br', 'code', 'pre', 'sub', 'sup']
    sanitized = bleach.clean(text, tags=allowed_tags, attributes={}, strip=True)
    return sanitized.strip()


def sanitize_plain_text(text: str) -> str:
    """Strip all markup, used for option texts and exam names."""
    return bleach.clean(text, tags=[], strip=True).strip()


def seconds_between(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds()))
