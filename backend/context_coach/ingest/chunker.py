"""Chunking utilities.

Text is split in two passes. :func:`split_lines` breaks every input line into
lines of bounded length, preferring sentence ends and falling back to word
boundaries. :func:`split_paragraphs` then packs those lines greedily into
chunks, keeping paragraphs together where they fit and seeding each new chunk
with the trailing words of the previous one.

Budgets are measured with :func:`~context_coach.utils.text.estimate_tokens`,
the same estimate stored on every chunk, always on the joined text.
"""

from __future__ import annotations

import re
from typing import Iterator, Sequence

from context_coach.utils.text import CHARS_PER_TOKEN, estimate_tokens

_SENTENCE_RE = re.compile(r"[^.!?]+(?:[.!?]+|$)")

# Blank input lines survive split_lines as this marker so paragraphs stay visible.
PARAGRAPH_BREAK = ""


def chunk_text(
    text: str,
    max_tokens: int = 400,
    max_tokens_per_line: int = 100,
    overlap_tokens: int = 50,
) -> list[str]:
    """Split text into chunks whose token estimate is at most ``max_tokens``."""
    if max_tokens <= 0 or max_tokens_per_line <= 0:
        raise ValueError("token budgets must be positive")
    if not text.strip():
        return []
    lines = split_lines(text, min(max_tokens_per_line, max_tokens))
    return split_paragraphs(lines, max_tokens, overlap_tokens)


def split_lines(text: str, max_tokens_per_line: int) -> list[str]:
    """Break text into lines of at most ``max_tokens_per_line`` tokens."""
    lines: list[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            if lines and lines[-1] != PARAGRAPH_BREAK:
                lines.append(PARAGRAPH_BREAK)
            continue
        lines.extend(_split_line(line, max_tokens_per_line))
    while lines and lines[-1] == PARAGRAPH_BREAK:
        lines.pop()
    return lines


def split_paragraphs(lines: Sequence[str], max_tokens: int, overlap_tokens: int = 0) -> list[str]:
    """Pack lines into chunks, preferring to break at paragraph boundaries.

    Lines longer than ``max_tokens`` are expected to have been split already by
    :func:`split_lines`; the overlap carried into a new chunk shrinks until the
    chunk fits.
    """
    overlap_tokens = max(0, min(overlap_tokens, max_tokens - 1))
    chunks: list[str] = []
    current: list[str] = []

    def fits(pieces: Sequence[str]) -> bool:
        return estimate_tokens(" ".join(pieces)) <= max_tokens

    def flush() -> None:
        nonlocal current
        body = " ".join(current).strip()
        if body:
            chunks.append(body)
        current = []

    def start_chunk(first_line: str) -> None:
        nonlocal current
        overlap = _tail_words(chunks[-1], overlap_tokens, first_line, max_tokens) if chunks else ""
        current = [overlap, first_line] if overlap else [first_line]

    for paragraph in _iter_paragraphs(lines):
        paragraph_text = " ".join(paragraph)

        if current and fits([*current, paragraph_text]):
            current.append(paragraph_text)
            continue

        if fits([paragraph_text]):
            if current:
                flush()
            start_chunk(paragraph_text)
            continue

        for line in paragraph:
            if current and fits([*current, line]):
                current.append(line)
                continue
            if current:
                flush()
            start_chunk(line)

    if current:
        flush()
    return chunks


def _iter_paragraphs(lines: Sequence[str]) -> Iterator[list[str]]:
    paragraph: list[str] = []
    for line in lines:
        if line == PARAGRAPH_BREAK:
            if paragraph:
                yield paragraph
            paragraph = []
        else:
            paragraph.append(line)
    if paragraph:
        yield paragraph


def _split_line(line: str, max_tokens: int) -> list[str]:
    if estimate_tokens(line) <= max_tokens:
        return [line]

    pieces: list[str] = []
    current: list[str] = []
    for match in _SENTENCE_RE.finditer(line):
        sentence = match.group().strip()
        if not sentence:
            continue
        if estimate_tokens(sentence) > max_tokens:
            if current:
                pieces.append(" ".join(current))
                current = []
            pieces.extend(_split_words(sentence, max_tokens))
            continue
        if current and estimate_tokens(" ".join([*current, sentence])) > max_tokens:
            pieces.append(" ".join(current))
            current = []
        current.append(sentence)
    if current:
        pieces.append(" ".join(current))
    return pieces


def _split_words(text: str, max_tokens: int) -> list[str]:
    """Pack words into pieces within budget; a single over-long word is hard cut."""
    max_chars = max_tokens * CHARS_PER_TOKEN
    pieces: list[str] = []
    current: list[str] = []
    for word in text.split():
        if len(word) > max_chars:
            if current:
                pieces.append(" ".join(current))
                current = []
            pieces.extend(word[idx : idx + max_chars] for idx in range(0, len(word), max_chars))
            continue
        if current and estimate_tokens(" ".join([*current, word])) > max_tokens:
            pieces.append(" ".join(current))
            current = []
        current.append(word)
    if current:
        pieces.append(" ".join(current))
    return pieces


def _tail_words(text: str, overlap_tokens: int, first_line: str, max_tokens: int) -> str:
    """Longest run of trailing words of ``text`` within the overlap that still lets ``first_line`` fit."""
    if overlap_tokens <= 0:
        return ""
    tail: list[str] = []
    for word in reversed(text.split()):
        candidate = [word, *tail]
        overlap = " ".join(candidate)
        if estimate_tokens(overlap) > overlap_tokens:
            break
        if estimate_tokens(f"{overlap} {first_line}") > max_tokens:
            break
        tail = candidate
    return " ".join(tail)


__all__ = ["chunk_text", "split_lines", "split_paragraphs", "PARAGRAPH_BREAK"]
