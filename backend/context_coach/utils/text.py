"""Text processing helpers."""

from __future__ import annotations

import re


WHITESPACE_RE = re.compile(r"\s+")
CHARS_PER_TOKEN = 4


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def estimate_tokens(text: str) -> int:
    """Model-token estimate (four characters per token) used for chunk budgets and stored counts."""
    return len(text) // CHARS_PER_TOKEN
