"""Hashing utilities."""

from __future__ import annotations

import hashlib


def sha256_bytes(data: bytes) -> str:
    """Return hex digest for bytes input."""
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    """Return hex digest for UTF-8 encoded text."""
    return sha256_bytes(text.encode("utf-8"))


def document_key(prefix: str, data: bytes | str, length: int = 24) -> str:
    """Stable parent-document id derived from content, so re-submissions map to one document."""
    digest = sha256_bytes(data) if isinstance(data, bytes) else sha256_text(data)
    return f"{prefix}_{digest[:length]}"
