"""Text normalizers for transcripts, HTML pages and markdown articles."""

from __future__ import annotations

import html
import re
from urllib.parse import urljoin, urlparse

from markdown_it import MarkdownIt

from context_coach.utils.text import normalize

_MD = MarkdownIt()

_TIMESTAMP_RE = re.compile(r"\b\d{1,2}:\d{2}(?::\d{2})?\b\s*\n?")
_CHAPTER_RE = re.compile(r"^\s*\d+\.\s+[A-Z][^.!?\n]{0,50}(?:\?|$)", re.MULTILINE)
_BRACKET_RE = re.compile(r"\[[^\]]*\]")
_FOREIGN_RE = re.compile(r"\bforeign\b", re.IGNORECASE)

FILLER_PHRASES = (
    "kind of like",
    "sort of like",
    "if you know what I mean",
    "you know what I mean",
    "you know",
    "I mean",
    "I guess",
    "I think",
    "let's say",
    "so to speak",
    "more or less",
    "in a way",
    "as I said",
    "as we said",
    "like I said",
    "that being said",
    "having said that",
)

FILLER_WORDS = (
    "um",
    "uh",
    "ah",
    "eh",
    "er",
    "hmm",
    "basically",
    "actually",
    "literally",
    "obviously",
    "essentially",
    "right",
    "okay",
    "ok",
    "so",
    "well",
    "like",
    "just",
)


def _whole_words(terms: tuple[str, ...]) -> re.Pattern[str]:
    # Longest first so "if you know what I mean" wins over "you know".
    ordered = sorted(terms, key=len, reverse=True)
    return re.compile(r"\b(?:" + "|".join(re.escape(term) for term in ordered) + r")\b", re.IGNORECASE)


_FILLER_PHRASE_RE = _whole_words(FILLER_PHRASES)
_FILLER_WORD_RE = _whole_words(FILLER_WORDS)
_MULTI_SPACE_RE = re.compile(r"\s{2,}")
_MISSING_STOP_RE = re.compile(r"([a-z])\s+([A-Z][a-z])")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([.!?,;:])")
_NO_SPACE_AFTER_PUNCT_RE = re.compile(r"([.!?,;:])([A-Za-z])")

_HTML_BLOCK_RE = re.compile(r"<(script|style|nav|footer|header|aside)[^>]*>[\s\S]*?</\1>", re.IGNORECASE)
_HTML_TAG_RE = re.compile(r"<[^>]+>")
_HREF_RE = re.compile(r"href=[\"']([^\"']+)[\"']", re.IGNORECASE)
_TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)


def clean_transcript(text: str) -> str:
    """Strip timestamps, stage markers and filler speech from a video transcript."""
    if not text:
        return ""
    cleaned = _TIMESTAMP_RE.sub(" ", text)
    cleaned = _CHAPTER_RE.sub(" ", cleaned)
    cleaned = _BRACKET_RE.sub(" ", cleaned)
    cleaned = _FOREIGN_RE.sub(" ", cleaned)
    cleaned = _FILLER_PHRASE_RE.sub(" ", cleaned)
    cleaned = _FILLER_WORD_RE.sub(" ", cleaned)
    cleaned = _MULTI_SPACE_RE.sub(" ", cleaned)
    cleaned = _MISSING_STOP_RE.sub(r"\1. \2", cleaned)
    cleaned = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", cleaned)
    cleaned = _NO_SPACE_AFTER_PUNCT_RE.sub(r"\1 \2", cleaned)
    return normalize(cleaned)


def html_to_text(markup: str) -> str:
    """Reduce an HTML page to its readable text."""
    if not markup:
        return ""
    text = _HTML_BLOCK_RE.sub(" ", markup)
    text = _HTML_TAG_RE.sub(" ", text)
    text = normalize(text)
    return html.unescape(text)


def extract_links(markup: str, base_url: str, scope_url: str | None = None) -> list[str]:
    """Absolute links on the same host and under the scope path, first-seen order.

    Relative hrefs resolve against ``base_url`` (the page they appear on);
    ``scope_url`` (default: ``base_url``) bounds which links are kept.
    """
    base = urlparse(scope_url or base_url)
    base_path = base.path or "/"
    seen: set[str] = set()
    links: list[str] = []
    for match in _HREF_RE.finditer(markup):
        href = html.unescape(match.group(1).strip())
        if not href or href.startswith(("#", "mailto:", "javascript:")):
            continue
        absolute = urlparse(urljoin(base_url, href))
        if absolute.scheme not in ("http", "https") or absolute.netloc != base.netloc:
            continue
        if not absolute.path.startswith(base_path):
            continue
        normalized = f"{absolute.scheme}://{absolute.netloc}{absolute.path}"
        if normalized not in seen:
            seen.add(normalized)
            links.append(normalized)
    return links


def extract_title(markup: str) -> str | None:
    match = _TITLE_RE.search(markup or "")
    if not match:
        return None
    title = normalize(html.unescape(match.group(1)))
    return title or None


def normalize_url(url: str) -> str:
    """Drop query and fragment so crawled URLs compare equal."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


def markdown_to_text(text: str) -> str:
    """Flatten markdown to plain text, one paragraph per block."""
    tokens = _MD.parse(text)
    parts: list[str] = []
    for token in tokens:
        if token.type == "inline" and token.children:
            content = "".join(_inline_text(child) for child in token.children)
        else:
            content = token.content
        content = content.strip()
        if content:
            parts.append(content)
    return "\n\n".join(parts) if parts else text.strip()


def _inline_text(token) -> str:
    if token.type in ("softbreak", "hardbreak"):
        return " "
    if token.type in ("text", "code_inline"):
        return token.content
    return ""


__all__ = [
    "clean_transcript",
    "html_to_text",
    "extract_links",
    "extract_title",
    "normalize_url",
    "markdown_to_text",
    "FILLER_PHRASES",
    "FILLER_WORDS",
]
