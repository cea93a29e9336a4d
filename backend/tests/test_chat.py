"""Chat turns: sessions, streaming, persistence and prompt assembly."""

from __future__ import annotations

import pytest

from context_coach.chat.assembler import STREAM_FAILURE_MESSAGE, ChatService, generate_title
from context_coach.chat.tools import KnowledgeBaseTool
from context_coach.core.errors import ProviderError, SessionAccessDeniedError, SessionNotFoundError
from context_coach.memory.extractor import MemoryExtractor
from context_coach.memory.retrieval import MemoryRetriever
from context_coach.memory.worker import MemoryExtractionWorker
from context_coach.models.entities import Memory, MemoryCategory, MessageRole
from context_coach.retrieval import ContentEmbeddingCache, SemanticSearch
from fakes import FakeChatModel

PROFILE = "learner-1"


@pytest.fixture
def worker(conversation_store, memory_store, embeddings, chat_model) -> MemoryExtractionWorker:
    return MemoryExtractionWorker(conversation_store, memory_store, MemoryExtractor(chat_model), embeddings)


def _service(conversation_store, memory_store, embeddings, settings, model, worker=None, knowledge_base=None):
    return ChatService(
        conversation_store,
        MemoryRetriever(memory_store, embeddings, settings),
        model,
        settings,
        extraction_worker=worker,
        knowledge_base=knowledge_base,
    )


@pytest.fixture
def service(conversation_store, memory_store, embeddings, settings, chat_model, worker) -> ChatService:
    return _service(conversation_store, memory_store, embeddings, settings, chat_model, worker)


async def _collect(events) -> list:
    return [event async for event in events]


def test_short_message_is_its_own_title() -> None:
    assert generate_title("  What is a monad?  ") == "What is a monad?"


def test_long_title_cut_at_word_boundary() -> None:
    message = "Can you explain how dependency injection works in large FastAPI applications with many routers"
    title = generate_title(message)
    assert title.endswith("...")
    assert len(title) <= 53
    assert message.startswith(title[:-3])
    assert message[len(title) - 3] == " "


def test_long_title_without_useful_break_is_hard_cut() -> None:
    assert generate_title("a" * 80) == "a" * 50 + "..."
    title = generate_title("ab " + "x" * 80)
    assert title == ("ab " + "x" * 80)[:50] + "..."


@pytest.mark.asyncio
async def test_first_message_starts_session_and_streams(service, conversation_store, worker) -> None:
    events = await _collect(service.stream_turn(PROFILE, "How do I structure a FastAPI project?"))

    assert [event.type for event in events] == ["start", "content", "content", "done"]
    start, done = events[0], events[-1]
    assert start.is_new_session is True
    assert "".join(event.text for event in events[1:-1]) == "Hello there"

    session = conversation_store.get_session(start.session_id)
    assert session.profile_id == PROFILE
    assert session.title == "How do I structure a FastAPI project?"
    messages = conversation_store.list_messages(session.id)
    assert [message.role for message in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert messages[1].id == done.message_id
    assert messages[1].content == "Hello there"
    assert messages[1].tokens_used == 15
    assert messages[1].model_used == "fake-model"
    assert worker.pending == 1


@pytest.mark.asyncio
async def test_history_precedes_new_message_once(service, chat_model) -> None:
    events = await _collect(service.stream_turn(PROFILE, "first question"))
    session_id = events[0].session_id
    events = await _collect(service.stream_turn(PROFILE, "second question", session_id))

    assert events[0].is_new_session is False
    prompt = chat_model.calls[-1]
    assert [message.role for message in prompt] == ["system", "user", "assistant", "user"]
    assert [message.content for message in prompt[1:]] == ["first question", "Hello there", "second question"]


@pytest.mark.asyncio
async def test_unknown_session_yields_only_an_error(service) -> None:
    events = await _collect(service.stream_turn(PROFILE, "hi", "ses_missing"))
    assert [event.type for event in events] == ["error"]
    assert events[0].message == "Conversation not found"


@pytest.mark.asyncio
async def test_other_learners_session_is_rejected(service, conversation_store) -> None:
    session = conversation_store.create_session("someone-else")
    events = await _collect(service.stream_turn(PROFILE, "hi", session.id))
    assert [event.type for event in events] == ["error"]
    assert events[0].message == "Access denied"
    assert conversation_store.list_messages(session.id) == []


@pytest.mark.asyncio
async def test_provider_failure_mid_stream_ends_with_error(
    conversation_store, memory_store, embeddings, settings
) -> None:
    model = FakeChatModel(chunks=("Hello", " there"), fail_after=1)
    service = _service(conversation_store, memory_store, embeddings, settings, model)

    events = await _collect(service.stream_turn(PROFILE, "Explain closures"))

    assert [event.type for event in events] == ["start", "content", "error"]
    assert events[-1].message == STREAM_FAILURE_MESSAGE
    messages = conversation_store.list_messages(events[0].session_id)
    assert [message.role for message in messages] == [MessageRole.USER]


@pytest.mark.asyncio
async def test_abandoned_stream_keeps_partial_answer(service, conversation_store) -> None:
    stream = service.stream_turn(PROFILE, "Explain closures")
    start = await stream.__anext__()
    content = await stream.__anext__()
    assert content.text == "Hello"
    await stream.aclose()

    messages = conversation_store.list_messages(start.session_id)
    assert [message.role for message in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert messages[1].content == "Hello"
    assert messages[1].tokens_used is None


@pytest.mark.asyncio
async def test_send_message_returns_complete_answer(service, conversation_store) -> None:
    result = await service.send_message(PROFILE, "What is a closure?")

    assert result.is_new_session is True
    assert result.message.content == "Hello there"
    assert result.message.tokens_used == 15
    assert result.session.title == "What is a closure?"
    assert len(conversation_store.list_messages(result.session.id)) == 2


@pytest.mark.asyncio
async def test_send_message_propagates_session_and_provider_errors(
    conversation_store, memory_store, embeddings, settings
) -> None:
    model = FakeChatModel(error=ProviderError("provider down", 500))
    service = _service(conversation_store, memory_store, embeddings, settings, model)
    with pytest.raises(ProviderError):
        await service.send_message(PROFILE, "hi")
    with pytest.raises(SessionNotFoundError):
        await service.send_message(PROFILE, "hi", "ses_missing")
    other = conversation_store.create_session("someone-else")
    with pytest.raises(SessionAccessDeniedError):
        await service.send_message(PROFILE, "hi", other.id)


@pytest.mark.asyncio
async def test_system_prompt_carries_profile_and_memories(service, chat_model, memory_store) -> None:
    service.update_learner_profile(PROFILE, current_role="Backend developer", primary_tech_stack=["python", "postgres"])
    memory_store.create(
        Memory(id="mem_1", profile_id=PROFILE, category=MemoryCategory.CURRENT_FOCUS, content="Migrating to asyncio")
    )

    await _collect(service.stream_turn(PROFILE, "Where do I start?"))

    system = chat_model.calls[-1][0].content
    assert "Role: Backend developer" in system
    assert "Tech stack: python, postgres" in system
    assert "## What you remember about this learner" in system
    assert "- Migrating to asyncio" in system


@pytest.mark.asyncio
async def test_knowledge_base_tool_offered_when_enabled(
    conversation_store, memory_store, content_store, embeddings, settings
) -> None:
    model = FakeChatModel()
    tool = KnowledgeBaseTool(SemanticSearch(ContentEmbeddingCache(content_store), embeddings))
    service = _service(conversation_store, memory_store, embeddings, settings, model, knowledge_base=tool)

    await service.send_message(PROFILE, "hi")
    settings.knowledge_base_enabled = False
    await service.send_message(PROFILE, "hi again")

    assert model.tool_calls == [["search_knowledge_base"], []]


def test_sessions_listing_and_soft_delete(service, conversation_store) -> None:
    first = conversation_store.create_session(PROFILE)
    second = conversation_store.create_session(PROFILE)
    conversation_store.create_session("someone-else")

    assert {session.id for session in service.list_sessions(PROFILE)} == {first.id, second.id}
    service.delete_session(PROFILE, first.id)
    assert [session.id for session in service.list_sessions(PROFILE)] == [second.id]
    with pytest.raises(SessionNotFoundError):
        service.get_conversation(PROFILE, first.id)
    with pytest.raises(SessionAccessDeniedError):
        service.delete_session("someone-else", second.id)


def test_learner_profile_updates(service) -> None:
    assert service.get_learner_profile(PROFILE) is None
    profile = service.update_learner_profile(PROFILE, learning_goals=["system design"], experience_years=3)
    assert profile.learning_goals == ["system design"]
    profile = service.update_learner_profile(PROFILE, preferred_pace="fast")
    assert profile.experience_years == 3
    assert service.get_learner_profile(PROFILE).preferred_pace == "fast"
    with pytest.raises(ValueError):
        service.update_learner_profile(PROFILE, favourite_colour="green")
