"""Ingestion orchestration.

Producers create a queued job and hand a message to the coordinator's queue.
A single consumer task drives each job through ``queued -> processing ->
completed | failed``. Chunks are embedded and staged in memory, then written in
one transaction that first removes any chunks left by an earlier ingestion of
the same parent document.
"""

from __future__ import annotations

import sqlite3
import time
from collections import deque

import httpx

from context_coach.core.config import Settings
from context_coach.core.errors import SourceUnavailableError
from context_coach.core.logging import get_logger
from context_coach.core.metrics import CACHE_REFRESH_FAILURES, INGEST_DURATION, INGEST_JOBS
from context_coach.core.workers import BackgroundConsumer
from context_coach.db.content_store import ContentStore
from context_coach.ingest.chunker import chunk_text
from context_coach.ingest.embeddings import EmbeddingService
from context_coach.ingest.normalize import (
    clean_transcript,
    extract_links,
    extract_title,
    html_to_text,
    markdown_to_text,
    normalize_url,
)
from context_coach.ingest.sources import HttpPageFetcher, PageFetcher, PdfPageExtractor, PyMuPdfPageExtractor
from context_coach.ingest.types import (
    ArticleIngestion,
    DocsScrape,
    IngestionMessage,
    PdfIngestion,
    TranscriptIngestion,
)
from context_coach.models.entities import (
    ContentChunk,
    ContentIngestionJob,
    ContentSource,
    IngestionStatus,
)
from context_coach.retrieval.cache import ContentEmbeddingCache
from context_coach.utils.hashing import document_key
from context_coach.utils import ids
from context_coach.utils.text import estimate_tokens

logger = get_logger(__name__)

_KEY_PREFIX = {
    ContentSource.PDF: "pdf",
    ContentSource.VIDEO_TRANSCRIPT: "yt",
    ContentSource.OFFICIAL_DOCS: "docs",
    ContentSource.ARTICLE: "art",
}


class IngestionCoordinator(BackgroundConsumer[IngestionMessage]):
    """Coordinate extraction, chunking, embeddings, and persistence."""

    name = "ingestion-coordinator"

    def __init__(
        self,
        store: ContentStore,
        embeddings: EmbeddingService,
        cache: ContentEmbeddingCache,
        settings: Settings,
        pdf_extractor: PdfPageExtractor | None = None,
        page_fetcher: PageFetcher | None = None,
    ) -> None:
        super().__init__()
        self.store = store
        self.embeddings = embeddings
        self.cache = cache
        self.settings = settings
        self.pdf_extractor = pdf_extractor or PyMuPdfPageExtractor()
        self.page_fetcher = page_fetcher or HttpPageFetcher(
            request_delay=settings.docs_request_delay,
            timeout=settings.http_timeout,
        )

    # Producers --------------------------------------------------------

    def submit_pdf(
        self,
        data: bytes,
        title: str,
        author: str | None = None,
        technology: str | None = None,
        parent_document_id: str | None = None,
    ) -> ContentIngestionJob:
        parent = parent_document_id or _key(ContentSource.PDF, data)
        job = self._create_job(ContentSource.PDF, title, parent, author=author, technology=technology)
        self.enqueue(PdfIngestion(job_id=job.id, data=data))
        return job

    def submit_transcript(
        self,
        transcript: str,
        title: str,
        author: str | None = None,
        technology: str | None = None,
        parent_document_id: str | None = None,
        source_url: str | None = None,
    ) -> ContentIngestionJob:
        parent = parent_document_id or _key(ContentSource.VIDEO_TRANSCRIPT, source_url or transcript)
        job = self._create_job(
            ContentSource.VIDEO_TRANSCRIPT, title, parent, author=author, technology=technology, source_url=source_url
        )
        self.enqueue(TranscriptIngestion(job_id=job.id, transcript=transcript))
        return job

    def submit_docs(
        self,
        source_url: str | None,
        title: str,
        max_pages: int | None = None,
        technology: str | None = None,
        parent_document_id: str | None = None,
    ) -> ContentIngestionJob:
        parent = parent_document_id or _key(ContentSource.OFFICIAL_DOCS, source_url or ids.new_id())
        job = self._create_job(
            ContentSource.OFFICIAL_DOCS, title, parent, technology=technology, source_url=source_url, max_pages=max_pages
        )
        self.enqueue(DocsScrape(job_id=job.id))
        return job

    def submit_article(
        self,
        markdown: str,
        title: str,
        author: str | None = None,
        technology: str | None = None,
        parent_document_id: str | None = None,
        source_url: str | None = None,
    ) -> ContentIngestionJob:
        parent = parent_document_id or _key(ContentSource.ARTICLE, source_url or markdown)
        job = self._create_job(
            ContentSource.ARTICLE, title, parent, author=author, technology=technology, source_url=source_url
        )
        self.enqueue(ArticleIngestion(job_id=job.id, markdown=markdown))
        return job

    # Job queries ------------------------------------------------------

    def get_job(self, job_id: str) -> ContentIngestionJob | None:
        return self.store.get_job(job_id)

    def list_jobs(self, status: IngestionStatus | None = None, limit: int = 100) -> list[ContentIngestionJob]:
        return self.store.list_jobs(status=status, limit=limit)

    async def delete_job(self, job_id: str) -> bool:
        """Remove a job together with the chunks it produced."""
        job = self.store.get_job(job_id)
        if job is None:
            return False
        removed = self.store.delete_by_parent(job.parent_document_id)
        self.store.delete_job(job_id)
        logger.info("Deleted job %s and %s chunks", job_id, removed, extra={"ctx_job_id": job_id})
        await self._refresh_cache()
        return True

    # Consumer ---------------------------------------------------------

    async def handle(self, message: IngestionMessage) -> None:
        job = self.store.get_job(message.job_id)
        if job is None:
            logger.warning("Ingestion job %s not found", message.job_id)
            return
        if job.status is not IngestionStatus.QUEUED:
            logger.warning("Skipping job %s in status %s", job.id, job.status.value)
            return
        if isinstance(message, DocsScrape) and not job.source_url:
            job.mark_failed("No source URL specified")
            self.store.save_job(job)
            INGEST_JOBS.labels(source=job.source.value, status="failed").inc()
            return

        extra = {"ctx_job_id": job.id}
        start_time = time.perf_counter()
        try:
            job.mark_processing()
            self.store.save_job(job)
            logger.info("Processing %s job %s", job.source.value, job.id, extra=extra)

            match message:
                case PdfIngestion(data=data):
                    chunks = await self._process_pdf(job, data)
                case TranscriptIngestion(transcript=transcript):
                    chunks = await self._process_text(job, clean_transcript(transcript))
                case DocsScrape():
                    chunks = await self._process_docs(job)
                case ArticleIngestion(markdown=markdown):
                    chunks = await self._process_text(job, markdown_to_text(markdown))
                case _:
                    raise TypeError(f"Unsupported ingestion message {type(message).__name__}")

            created = self.store.replace_document_chunks(job.parent_document_id, chunks)
        except Exception as exc:
            logger.exception("Ingestion job %s failed: %s", job.id, exc, extra=extra)
            job.mark_failed(str(exc) or type(exc).__name__)
            self.store.save_job(job)
            INGEST_JOBS.labels(source=job.source.value, status="failed").inc()
            return

        job.mark_completed(created)
        self._save_completed(job)
        INGEST_JOBS.labels(source=job.source.value, status="completed").inc()
        INGEST_DURATION.labels(source=job.source.value).observe(time.perf_counter() - start_time)
        logger.info("Completed job %s with %s chunks", job.id, job.chunks_created, extra=extra)
        await self._refresh_cache()

    # Internal helpers -------------------------------------------------

    async def _process_pdf(self, job: ContentIngestionJob, data: bytes) -> list[ContentChunk]:
        pages = await self.pdf_extractor.extract_pages(data)
        self._progress(job, 0, len(pages))
        staged: list[ContentChunk] = []
        for index, page in enumerate(pages):
            await self._stage(job, page, staged, title=lambda _n, i=index: f"{job.title} - Page {i + 1}")
            self._progress(job, index + 1, len(pages))
        return staged

    async def _process_text(self, job: ContentIngestionJob, text: str) -> list[ContentChunk]:
        self._progress(job, 0, 1)
        staged: list[ContentChunk] = []
        await self._stage(job, text, staged, title=lambda n: f"{job.title} (Part {n + 1})")
        self._progress(job, 1, 1)
        return staged

    async def _process_docs(self, job: ContentIngestionJob) -> list[ContentChunk]:
        max_pages = job.max_pages or self.settings.docs_default_max_pages
        start_url = normalize_url(job.source_url or "")
        visited: set[str] = set()
        to_visit: deque[str] = deque([start_url])
        staged: list[ContentChunk] = []
        pages_processed = 0

        while to_visit and pages_processed < max_pages:
            url = to_visit.popleft()
            if url in visited:
                continue
            visited.add(url)
            try:
                markup = await self.page_fetcher.fetch(url)
            except httpx.HTTPError as exc:
                logger.warning("Failed to fetch %s: %s", url, exc, extra={"ctx_job_id": job.id})
                continue

            for link in extract_links(markup, url, scope_url=start_url):
                if link not in visited:
                    to_visit.append(link)

            page_title = extract_title(markup) or f"Page {pages_processed + 1}"
            await self._stage(job, html_to_text(markup), staged, title=lambda _n, t=page_title: t)
            pages_processed += 1
            self._progress(job, pages_processed, min(len(visited) + len(to_visit), max_pages))
        if pages_processed == 0:
            raise SourceUnavailableError(f"No pages could be fetched from {start_url}")
        return staged

    async def _stage(self, job: ContentIngestionJob, text: str, staged: list[ContentChunk], title) -> None:
        """Chunk and embed ``text``, appending the resulting chunks to ``staged``."""
        pieces = chunk_text(
            text,
            max_tokens=self.settings.chunk_max_tokens,
            max_tokens_per_line=self.settings.chunk_max_tokens_per_line,
            overlap_tokens=self.settings.chunk_overlap_tokens,
        )
        for part, content in enumerate(pieces):
            if not content.strip():
                continue
            chunk_index = len(staged)
            staged.append(
                ContentChunk(
                    id=ids.new_id(ids.CHUNK),
                    source=job.source,
                    source_identifier=f"{job.parent_document_id}_{chunk_index}",
                    title=title(part),
                    content=content,
                    embedding=await self.embeddings.embed_bytes(content),
                    token_count=estimate_tokens(content),
                    author=job.author,
                    technology=job.technology,
                    parent_document_id=job.parent_document_id,
                    chunk_index=chunk_index,
                )
            )

    def _save_completed(self, job: ContentIngestionJob) -> None:
        """Persist a completed job; its chunks are already committed, so one failed write is retried."""
        try:
            self.store.save_job(job)
        except sqlite3.Error as exc:
            logger.warning("Retrying completion of job %s: %s", job.id, exc, extra={"ctx_job_id": job.id})
            self.store.save_job(job)

    def _progress(self, job: ContentIngestionJob, done: int, total: int) -> None:
        job.update_progress(done, total)
        self.store.save_job(job)

    def _create_job(
        self,
        source: ContentSource,
        title: str,
        parent_document_id: str,
        author: str | None = None,
        technology: str | None = None,
        source_url: str | None = None,
        max_pages: int | None = None,
    ) -> ContentIngestionJob:
        job = ContentIngestionJob(
            id=ids.new_id(ids.JOB),
            source=source,
            title=title,
            parent_document_id=parent_document_id,
            source_url=source_url,
            max_pages=max_pages,
            author=author,
            technology=technology.lower() if technology else None,
        )
        self.store.create_job(job)
        logger.info("Queued %s job %s", source.value, job.id, extra={"ctx_job_id": job.id})
        return job

    async def _refresh_cache(self) -> None:
        try:
            await self.cache.refresh()
        except Exception:
            CACHE_REFRESH_FAILURES.inc()
            logger.exception("Embedding cache refresh failed; keeping previous snapshot")


def _key(source: ContentSource, data: bytes | str) -> str:
    return document_key(_KEY_PREFIX[source], data)


__all__ = ["IngestionCoordinator"]
