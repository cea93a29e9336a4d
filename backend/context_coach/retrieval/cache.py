"""In-memory snapshot of every chunk embedding."""

from __future__ import annotations

import asyncio

from context_coach.core.logging import get_logger
from context_coach.core.metrics import CACHE_SIZE
from context_coach.db.content_store import ContentStore
from context_coach.ingest.embeddings import deserialize_embedding
from context_coach.models.entities import CachedChunk, ContentChunk

logger = get_logger(__name__)


class ContentEmbeddingCache:
    """Immutable chunk snapshot replaced wholesale on refresh.

    Readers take the current tuple reference and never see a partially
    rebuilt snapshot. Refreshes are serialized by a lock. ``get_all`` blocks
    until the first refresh has finished and raises if it failed.
    """

    def __init__(self, store: ContentStore) -> None:
        self.store = store
        self._snapshot: tuple[CachedChunk, ...] = ()
        self._lock = asyncio.Lock()
        self._ready = asyncio.Event()
        self._initial_error: BaseException | None = None

    @property
    def is_initialized(self) -> bool:
        return self._ready.is_set() and self._initial_error is None

    @property
    def count(self) -> int:
        return len(self._snapshot)

    async def initialize(self) -> None:
        """Run the first load; failure propagates so startup aborts."""
        try:
            await self.refresh()
        except Exception as exc:
            self._initial_error = exc
            self._ready.set()
            raise

    async def get_all(self) -> tuple[CachedChunk, ...]:
        await self._ready.wait()
        if self._initial_error is not None:
            raise RuntimeError("Embedding cache failed to initialize") from self._initial_error
        return self._snapshot

    async def refresh(self) -> int:
        async with self._lock:
            # The read stays on the loop thread: the connection is shared with writers.
            chunks = self.store.list_chunks()
            snapshot = await asyncio.to_thread(_build_snapshot, chunks)
            self._snapshot = snapshot
            self._initial_error = None
            self._ready.set()
        CACHE_SIZE.set(len(snapshot))
        logger.info("Embedding cache refreshed with %s chunks", len(snapshot))
        return len(snapshot)


def _build_snapshot(chunks: list[ContentChunk]) -> tuple[CachedChunk, ...]:
    return tuple(_to_cached(chunk) for chunk in chunks)


def _to_cached(chunk: ContentChunk) -> CachedChunk:
    return CachedChunk(
        id=chunk.id,
        source=chunk.source,
        title=chunk.title,
        content=chunk.content,
        embedding=tuple(deserialize_embedding(chunk.embedding)),
        author=chunk.author,
        technology=chunk.technology,
        parent_document_id=chunk.parent_document_id,
        chunk_index=chunk.chunk_index,
    )


__all__ = ["ContentEmbeddingCache"]
