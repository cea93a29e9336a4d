"""Memory extraction, supersession and context selection."""

from __future__ import annotations

import orjson
import pytest

from context_coach.ingest.embeddings import serialize_embedding
from context_coach.memory.extractor import MemoryCandidate, MemoryExtractor, build_transcript, parse_extraction_response
from context_coach.memory.retrieval import MemoryRetriever, format_memory_context, merge_memories
from context_coach.memory.worker import MemoryExtractionRequest, MemoryExtractionWorker
from context_coach.models.entities import Memory, MemoryCategory, MessageRole
from fakes import FakeChatModel

PROFILE = "learner-1"


def _memory(memory_id: str, importance: int = 3, category=MemoryCategory.TOPIC_DISCUSSED) -> Memory:
    return Memory(id=memory_id, profile_id=PROFILE, category=category, content=memory_id, importance=importance)


def _worker(conversation_store, memory_store, embeddings, replies) -> tuple[MemoryExtractionWorker, FakeChatModel]:
    model = FakeChatModel(replies=replies)
    worker = MemoryExtractionWorker(conversation_store, memory_store, MemoryExtractor(model), embeddings)
    return worker, model


EXTRACTION = orjson.dumps(
    {
        "topics_discussed": ["FastAPI routing"],
        "concepts_explained": [],
        "struggles_identified": ["async database sessions"],
        "strengths_demonstrated": [],
        "questions_asked": [],
        "current_focus": "Building a REST API for a bookstore",
        "importance_notes": {"FastAPI routing": 5, "async database sessions": 9},
    }
).decode()


# Merge -------------------------------------------------------------------


def test_merge_ranks_semantic_then_importance_then_recency() -> None:
    m1, m2, m3 = _memory("m1", 4), _memory("m2"), _memory("m3", 5)
    merged = merge_memories(recent=[m1, m2], important=[m3, m1], semantic=[(m2, 0.8)])

    assert [item.memory.id for item in merged] == ["m2", "m3", "m1"]
    assert [item.reason for item in merged] == ["semantic", "important", "important"]
    assert merged[0].score == pytest.approx(1.8)
    assert merged[0].similarity == pytest.approx(0.8)
    assert merged[1].score == pytest.approx(1.0)
    assert merged[2].score == pytest.approx(0.8)


def test_merge_recent_scores_decay_by_position() -> None:
    recent = [_memory("a"), _memory("b"), _memory("c"), _memory("d")]
    merged = merge_memories(recent=recent, important=[], semantic=[], recent_weight=0.5)
    assert [round(item.score, 3) for item in merged] == [0.5, 0.375, 0.25, 0.125]


def test_merge_caps_total() -> None:
    recent = [_memory(f"r{index}") for index in range(30)]
    assert len(merge_memories(recent=recent, important=[], semantic=[], max_total=20)) == 20
    assert merge_memories(recent=[], important=[], semantic=[]) == []


def test_format_memory_context_groups_by_category() -> None:
    focus = _memory("Learning Kubernetes", category=MemoryCategory.CURRENT_FOCUS)
    focus.content = "Learning Kubernetes"
    topic = _memory("Helm charts")
    text = format_memory_context(merge_memories(recent=[topic, focus], important=[], semantic=[]))
    assert text.startswith("## What you remember about this learner")
    assert text.index("Current focus:") < text.index("Topics discussed before:")
    assert "- Learning Kubernetes" in text
    assert format_memory_context([]) == ""


# Extraction parsing ------------------------------------------------------


def test_parse_extraction_response() -> None:
    candidates = parse_extraction_response(f"```json\n{EXTRACTION}\n```")
    by_category = {candidate.category: candidate for candidate in candidates}

    assert by_category[MemoryCategory.TOPIC_DISCUSSED].importance == 5
    assert by_category[MemoryCategory.STRUGGLE_IDENTIFIED].importance == 5
    focus = by_category[MemoryCategory.CURRENT_FOCUS]
    assert focus.content == "Building a REST API for a bookstore"
    assert focus.importance == 4


def test_parse_extraction_response_tolerates_garbage() -> None:
    assert parse_extraction_response("I could not find anything") == []
    assert parse_extraction_response("[1, 2]") == []
    assert parse_extraction_response('{"topics_discussed": "not a list", "current_focus": null}') == []


def test_transcript_labels_speakers(conversation_store) -> None:
    session = conversation_store.create_session(PROFILE)
    conversation_store.add_message(session.id, MessageRole.USER, "What is a closure?")
    conversation_store.add_message(session.id, MessageRole.ASSISTANT, "A function with captured state.")
    transcript = build_transcript(conversation_store.list_messages(session.id))
    assert "Learner: What is a closure?" in transcript
    assert "Coach: A function with captured state." in transcript


# Worker ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_extraction_creates_memories_and_checkpoints(conversation_store, memory_store, embeddings) -> None:
    worker, model = _worker(conversation_store, memory_store, embeddings, [EXTRACTION])
    session = conversation_store.create_session(PROFILE)
    conversation_store.add_message(session.id, MessageRole.USER, "How should I lay out my routers?")
    conversation_store.add_message(session.id, MessageRole.ASSISTANT, "Group them by resource.")

    result = await worker.extract_for_profile(PROFILE)

    assert result.sessions_processed == 1
    assert result.memories_created == 3
    active = memory_store.list_active(PROFILE)
    assert {memory.category for memory in active} == {
        MemoryCategory.TOPIC_DISCUSSED,
        MemoryCategory.STRUGGLE_IDENTIFIED,
        MemoryCategory.CURRENT_FOCUS,
    }
    assert all(memory.embedding is not None for memory in active)
    assert all(memory.source_session_id == session.id for memory in active)

    again = await worker.extract_for_profile(PROFILE)
    assert again.sessions_processed == 0
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_extraction_only_reads_messages_after_checkpoint(conversation_store, memory_store, embeddings, db) -> None:
    worker, model = _worker(conversation_store, memory_store, embeddings, ["{}"])
    session = conversation_store.create_session(PROFILE)
    conversation_store.add_message(session.id, MessageRole.USER, "first question")
    await worker.extract_for_profile(PROFILE)

    conversation_store.add_message(session.id, MessageRole.USER, "second question")
    db.write(
        "UPDATE conversation_sessions SET last_message_at = last_memory_extraction_at + 1000 WHERE id = ?",
        [session.id],
    )
    result = await worker.extract_for_profile(PROFILE)

    assert result.sessions_processed == 1
    prompt = model.calls[-1][-1].content
    assert "second question" in prompt
    assert "first question" not in prompt


@pytest.mark.asyncio
async def test_excluded_and_deleted_sessions_are_skipped(conversation_store, memory_store, embeddings) -> None:
    worker, _ = _worker(conversation_store, memory_store, embeddings, ["{}"])
    current = conversation_store.create_session(PROFILE)
    deleted = conversation_store.create_session(PROFILE)
    conversation_store.soft_delete_session(deleted.id)
    other = conversation_store.create_session("someone-else")

    result = await worker.extract_for_profile(PROFILE, exclude_session_id=current.id)

    assert result.sessions_processed == 0
    assert conversation_store.get_session(other.id).last_memory_extraction_at is None


@pytest.mark.asyncio
async def test_single_category_memory_is_superseded(conversation_store, memory_store, embeddings) -> None:
    worker, _ = _worker(conversation_store, memory_store, embeddings, ["{}"])
    old = await worker.apply_candidate(PROFILE, None, MemoryCandidate(MemoryCategory.CURRENT_FOCUS, "Learning Go", 4))
    new = await worker.apply_candidate(PROFILE, None, MemoryCandidate(MemoryCategory.CURRENT_FOCUS, "Learning Rust", 4))

    active = memory_store.list_active(PROFILE, MemoryCategory.CURRENT_FOCUS)
    assert [memory.id for memory in active] == [new.id]
    history = memory_store.list_history(PROFILE, MemoryCategory.CURRENT_FOCUS)
    assert [memory.id for memory in history] == [old.id, new.id]
    assert history[0].superseded_by_id == new.id
    assert history[0].superseded_at is not None
    assert not history[0].is_active and history[1].is_active


@pytest.mark.asyncio
async def test_repeated_memory_is_reinforced(conversation_store, memory_store, embeddings) -> None:
    worker, _ = _worker(conversation_store, memory_store, embeddings, ["{}"])
    first = await worker.apply_candidate(PROFILE, None, MemoryCandidate(MemoryCategory.TOPIC_DISCUSSED, "Caching", 2))
    second = await worker.apply_candidate(PROFILE, None, MemoryCandidate(MemoryCategory.TOPIC_DISCUSSED, "Caching", 4))

    assert second.id == first.id
    stored = memory_store.get(first.id)
    assert stored.occurrence_count == 2
    assert stored.importance == 4
    assert len(memory_store.list_active(PROFILE)) == 1


@pytest.mark.asyncio
async def test_queued_requests_are_handled_by_drain(conversation_store, memory_store, embeddings) -> None:
    worker, _ = _worker(conversation_store, memory_store, embeddings, [EXTRACTION])
    session = conversation_store.create_session(PROFILE)
    conversation_store.add_message(session.id, MessageRole.USER, "Routers?")

    worker.enqueue(MemoryExtractionRequest(profile_id=PROFILE))
    assert worker.pending == 1
    await worker.drain()

    assert worker.pending == 0
    assert len(memory_store.list_active(PROFILE)) == 3


# Retrieval ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_retriever_combines_recent_important_and_similar(memory_store, embeddings, settings) -> None:
    similar = _memory("kubernetes pod scheduling", importance=2)
    similar.embedding = serialize_embedding(await embeddings.embed("kubernetes pod scheduling"))
    important = _memory("prefers examples in Go", importance=5)
    memory_store.create(similar)
    memory_store.create(important)

    retriever = MemoryRetriever(memory_store, embeddings, settings)
    scored = await retriever.get_context_memories(PROFILE, "kubernetes pod scheduling")

    assert scored[0].memory.id == similar.id
    assert scored[0].reason == "semantic"
    assert {item.memory.id for item in scored} == {similar.id, important.id}


@pytest.mark.asyncio
async def test_retriever_skips_embedding_without_candidates(memory_store, settings) -> None:
    class ExplodingEmbeddings:
        async def embed(self, text: str):
            raise AssertionError("should not embed")

    retriever = MemoryRetriever(memory_store, ExplodingEmbeddings(), settings)
    memory_store.create(_memory("no embedding here"))
    assert await retriever.semantic_matches(PROFILE, "anything") == []
