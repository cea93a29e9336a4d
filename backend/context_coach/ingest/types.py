"""Messages carried by the ingestion queue."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class PdfIngestion:
    """A PDF whose pages are extracted and chunked page by page."""

    job_id: str
    data: bytes = field(repr=False)


@dataclass(slots=True, frozen=True)
class TranscriptIngestion:
    job_id: str
    transcript: str = field(repr=False)


@dataclass(slots=True, frozen=True)
class DocsScrape:
    """Breadth-first crawl starting at the job's ``source_url``."""

    job_id: str


@dataclass(slots=True, frozen=True)
class ArticleIngestion:
    job_id: str
    markdown: str = field(repr=False)


IngestionMessage = PdfIngestion | TranscriptIngestion | DocsScrape | ArticleIngestion


__all__ = [
    "PdfIngestion",
    "TranscriptIngestion",
    "DocsScrape",
    "ArticleIngestion",
    "IngestionMessage",
]
