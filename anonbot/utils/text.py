"""Text utilities – truncation to the webhook content limit."""

from __future__ import annotations

MAX_MESSAGE_LENGTH = 2000


def truncate(text: str, max_len: int = MAX_MESSAGE_LENGTH, suffix: str = "...") -> str:
    """Truncate *text* to *max_len* characters, appending *suffix* if cut."""
    if len(text) <= max_len:
        return text
    return text[: max_len - len(suffix)] + suffix
