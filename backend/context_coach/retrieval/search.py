"""Semantic search over the embedding cache."""

from __future__ import annotations

import time
from dataclasses import dataclass

from context_coach.core.logging import get_logger
from context_coach.ingest.embeddings import EmbeddingService, cosine_similarity
from context_coach.models.entities import CachedChunk, ContentSource
from context_coach.retrieval.cache import ContentEmbeddingCache

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class SearchFilters:
    source: ContentSource | None = None
    technology: str | None = None
    author: str | None = None

    def matches(self, chunk: CachedChunk) -> bool:
        if self.source is not None and chunk.source != self.source:
            return False
        if self.technology is not None and (chunk.technology or "").lower() != self.technology.lower():
            return False
        if self.author is not None and chunk.author != self.author:
            return False
        return True


@dataclass(slots=True)
class SearchResult:
    chunk_id: str
    source: ContentSource
    title: str
    content: str
    similarity: float
    author: str | None = None
    technology: str | None = None
    parent_document_id: str | None = None
    chunk_index: int | None = None


class SemanticSearch:
    """Linear cosine scan over the current cache snapshot."""

    def __init__(self, cache: ContentEmbeddingCache, embeddings: EmbeddingService) -> None:
        self.cache = cache
        self.embeddings = embeddings

    async def search(
        self,
        query: str,
        filters: SearchFilters | None = None,
        limit: int = 5,
        min_similarity: float = 0.7,
    ) -> list[SearchResult]:
        if not query.strip() or limit <= 0:
            return []
        start_time = time.perf_counter()
        filters = filters or SearchFilters()
        query_vector = await self.embeddings.embed(query)
        snapshot = await self.cache.get_all()

        scored: list[tuple[float, CachedChunk]] = []
        for chunk in snapshot:
            if not filters.matches(chunk):
                continue
            similarity = cosine_similarity(query_vector, chunk.embedding)
            if similarity >= min_similarity:
                scored.append((similarity, chunk))

        scored.sort(key=lambda item: (-item[0], item[1].id))
        results = [_to_result(chunk, similarity) for similarity, chunk in scored[:limit]]
        logger.debug(
            "Search scanned %s chunks, %s above %.2f in %.3fs",
            len(snapshot),
            len(scored),
            min_similarity,
            time.perf_counter() - start_time,
        )
        return results


def _to_result(chunk: CachedChunk, similarity: float) -> SearchResult:
    return SearchResult(
        chunk_id=chunk.id,
        source=chunk.source,
        title=chunk.title,
        content=chunk.content,
        similarity=similarity,
        author=chunk.author,
        technology=chunk.technology,
        parent_document_id=chunk.parent_document_id,
        chunk_index=chunk.chunk_index,
    )


__all__ = ["SearchFilters", "SearchResult", "SemanticSearch"]
