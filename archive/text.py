"""Sanitising helpers for free-text metadata fields."""
from __future__ import annotations

import re
from typing import Optional

# Any whitespace except the plain space, plus zero-width characters that
# ``\s`` does not match.
_DISALLOWED_WHITESPACE = re.compile(r"[^\S ]|[\u200b\u200c\u200d\u2060\ufeff]")


def clean_text(value: Optional[str]) -> str:
    """Strip tabs, newlines and Unicode space variants, keeping ``" "``."""

    if value is None:
        return ""
    return _DISALLOWED_WHITESPACE.sub("", str(value))


def clean_optional(value: Optional[str]) -> Optional[str]:
    """Return the cleaned value, or ``None`` when nothing printable remains."""

    cleaned = clean_text(value)
    if not cleaned.strip():
        return None
    return cleaned


__all__ = ["clean_optional", "clean_text"]
