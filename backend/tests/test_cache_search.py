"""Embedding cache snapshots and semantic search."""

from __future__ import annotations

import asyncio
import threading

import pytest

from context_coach.chat.tools import NO_RESULTS, KnowledgeBaseTool, format_results
from context_coach.models.entities import ContentChunk, ContentSource
from context_coach.retrieval import cache as cache_module
from context_coach.retrieval import ContentEmbeddingCache, SearchFilters, SearchResult, SemanticSearch


async def _store_chunk(content_store, embeddings, content: str, index: int = 0, **fields) -> ContentChunk:
    chunk = ContentChunk(
        id=f"chk_{index}",
        source=fields.pop("source", ContentSource.ARTICLE),
        source_identifier=f"art_1_{index}",
        title=fields.pop("title", f"Article (Part {index + 1})"),
        content=content,
        embedding=await embeddings.embed_bytes(content),
        token_count=len(content) // 4,
        parent_document_id="art_1",
        chunk_index=index,
        **fields,
    )
    content_store.upsert_chunk(chunk)
    return chunk


@pytest.mark.asyncio
async def test_readers_see_previous_snapshot_while_refresh_builds(content_store, embeddings, monkeypatch) -> None:
    cache = ContentEmbeddingCache(content_store)
    await _store_chunk(content_store, embeddings, "first chunk", index=0)
    await cache.initialize()
    await _store_chunk(content_store, embeddings, "second chunk", index=1)

    started, release = threading.Event(), threading.Event()
    build = cache_module._build_snapshot

    def slow_build(chunks):
        started.set()
        release.wait(timeout=5)
        return build(chunks)

    monkeypatch.setattr(cache_module, "_build_snapshot", slow_build)
    refresh = asyncio.create_task(cache.refresh())
    assert await asyncio.to_thread(started.wait, 5)

    assert [chunk.id for chunk in await cache.get_all()] == ["chk_0"]
    release.set()
    assert await refresh == 2
    assert cache.count == 2


@pytest.mark.asyncio
async def test_refresh_makes_new_chunks_visible(content_store, embeddings) -> None:
    cache = ContentEmbeddingCache(content_store)
    await cache.initialize()
    search = SemanticSearch(cache, embeddings)
    text = "repository pattern hides persistence details"
    await _store_chunk(content_store, embeddings, text)

    assert await search.search(text) == []
    assert await cache.refresh() == 1

    results = await search.search(text)
    assert [result.chunk_id for result in results] == ["chk_0"]
    assert results[0].similarity == pytest.approx(1.0, abs=1e-5)


@pytest.mark.asyncio
async def test_results_ranked_and_thresholded(content_store, embeddings) -> None:
    await _store_chunk(content_store, embeddings, "event sourcing stores every state change", 0)
    await _store_chunk(content_store, embeddings, "event sourcing with snapshots and projections", 1)
    await _store_chunk(content_store, embeddings, "css grid layout basics", 2)
    cache = ContentEmbeddingCache(content_store)
    await cache.initialize()
    search = SemanticSearch(cache, embeddings)

    results = await search.search("event sourcing stores every state change", min_similarity=0.25)
    assert results[0].chunk_id == "chk_0"
    assert "chk_2" not in [result.chunk_id for result in results]
    assert [r.similarity for r in results] == sorted((r.similarity for r in results), reverse=True)

    assert await search.search("completely unrelated kubernetes ingress", min_similarity=0.99) == []


@pytest.mark.asyncio
async def test_filters_and_limits(content_store, embeddings) -> None:
    text = "dependency injection container"
    await _store_chunk(content_store, embeddings, text, 0, technology="python", author="Ana")
    await _store_chunk(content_store, embeddings, text, 1, technology="java", author="Ben")
    cache = ContentEmbeddingCache(content_store)
    await cache.initialize()
    search = SemanticSearch(cache, embeddings)

    python_only = await search.search(text, filters=SearchFilters(technology="Python"))
    assert [result.chunk_id for result in python_only] == ["chk_0"]
    by_author = await search.search(text, filters=SearchFilters(author="Ben"))
    assert [result.chunk_id for result in by_author] == ["chk_1"]
    assert await search.search(text, filters=SearchFilters(source=ContentSource.PDF)) == []
    assert len(await search.search(text, limit=1)) == 1
    assert await search.search("   ") == []


@pytest.mark.asyncio
async def test_failed_initial_load_is_reported_to_readers(content_store) -> None:
    class BrokenStore:
        def list_chunks(self):
            raise RuntimeError("database locked")

    cache = ContentEmbeddingCache(BrokenStore())
    with pytest.raises(RuntimeError):
        await cache.initialize()
    assert not cache.is_initialized
    with pytest.raises(RuntimeError, match="failed to initialize"):
        await cache.get_all()


@pytest.mark.asyncio
async def test_knowledge_base_tool_formats_results(content_store, embeddings) -> None:
    text = "circuit breakers stop cascading failures"
    await _store_chunk(content_store, embeddings, text, 0, author="Nygard", title="Release It")
    cache = ContentEmbeddingCache(content_store)
    await cache.initialize()
    tool = KnowledgeBaseTool(SemanticSearch(cache, embeddings))

    output = await tool.invoke({"query": text})
    assert output.startswith("<knowledge_base>")
    assert output.endswith("</knowledge_base>")
    assert '<source type="Article" title="Release It">' in output
    assert "Author: Nygard" in output
    assert text in output
    assert await tool.invoke({"query": ""}) == NO_RESULTS


def _result(index: int, content: str) -> SearchResult:
    return SearchResult(
        chunk_id=f"chk_{index}",
        source=ContentSource.PDF,
        title=f"Book {index}",
        content=content,
        similarity=0.9,
    )


def test_format_results_respects_budget() -> None:
    results = [_result(0, "a" * 100), _result(1, "b" * 100)]
    output = format_results(results, max_chars=150)
    assert "a" * 100 in output
    assert "b" * 100 not in output


def test_format_results_truncates_oversized_first_result() -> None:
    output = format_results([_result(0, "x" * 1000)], max_chars=200)
    assert "... [truncated]" in output
    assert "x" * 1000 not in output
    assert format_results([], max_chars=200) == NO_RESULTS
