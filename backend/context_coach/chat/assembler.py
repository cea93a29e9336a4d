"""Chat turn orchestration: session resolution, context assembly, streaming and persistence."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator

from context_coach.chat.llm import ChatMessage, ChatModel, StreamChunk, Tool
from context_coach.chat.prompts import build_system_prompt
from context_coach.chat.tools import KnowledgeBaseTool
from context_coach.core.config import Settings
from context_coach.core.errors import SessionAccessDeniedError, SessionNotFoundError
from context_coach.core.logging import get_logger
from context_coach.core.metrics import CHAT_TOKENS, CHAT_TURNS
from context_coach.db.conversation_store import ConversationStore
from context_coach.memory.retrieval import MemoryRetriever, format_memory_context
from context_coach.memory.worker import MemoryExtractionRequest, MemoryExtractionWorker
from context_coach.models.dto import ChatEvent, ContentEvent, DoneEvent, ErrorEvent, StartEvent
from context_coach.models.entities import ConversationSession, LearnerProfile, Message, MessageRole

logger = get_logger(__name__)

STREAM_FAILURE_MESSAGE = "The coach could not finish this answer. Please try again."
_TITLE_MIN_BREAK = 20


def generate_title(message: str, max_length: int = 50) -> str:
    """Session title from the first message: cut at a word boundary and add an ellipsis."""
    title = message.strip()
    if len(title) <= max_length:
        return title
    cut = title.rfind(" ", 0, max_length + 1)
    if cut < _TITLE_MIN_BREAK:
        cut = max_length
    return title[:cut].rstrip() + "..."


@dataclass(slots=True)
class TurnContext:
    session: ConversationSession
    is_new_session: bool
    user_message: Message
    prompt: list[ChatMessage]


@dataclass(slots=True)
class TurnResult:
    session: ConversationSession
    is_new_session: bool
    message: Message


class ChatService:
    """Run chat turns for a learner.

    ``stream_turn`` is an async generator of chat events. A turn always starts
    with a ``start`` event unless the session cannot be used, and ends with
    exactly one ``done`` or ``error`` event unless the consumer goes away, in
    which case whatever was generated so far is stored.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        memories: MemoryRetriever,
        model: ChatModel,
        settings: Settings,
        extraction_worker: MemoryExtractionWorker | None = None,
        knowledge_base: KnowledgeBaseTool | None = None,
    ) -> None:
        self.conversations = conversations
        self.memories = memories
        self.model = model
        self.settings = settings
        self.extraction_worker = extraction_worker
        self.knowledge_base = knowledge_base

    # Turns ------------------------------------------------------------

    async def stream_turn(
        self,
        profile_id: str,
        message: str,
        session_id: str | None = None,
    ) -> AsyncIterator[ChatEvent]:
        try:
            session, is_new = self._resolve_session(profile_id, session_id)
        except (SessionNotFoundError, SessionAccessDeniedError) as exc:
            CHAT_TURNS.labels(outcome="rejected", new_session="false").inc()
            yield ErrorEvent(message=str(exc))
            return

        yield StartEvent(session_id=session.id, is_new_session=is_new)

        parts: list[str] = []
        usage: StreamChunk | None = None
        try:
            context = await self._prepare(session, is_new, message)
            async with aclosing(self.model.stream(context.prompt, self._tools())) as stream:
                async for chunk in stream:
                    if chunk.is_usage:
                        usage = chunk
                        continue
                    if chunk.content:
                        parts.append(chunk.content)
                        yield ContentEvent(text=chunk.content)
        except (asyncio.CancelledError, GeneratorExit):
            self._save_partial(session, is_new, parts)
            raise
        except Exception:
            logger.exception("Chat turn failed", extra={"ctx_session_id": session.id, "ctx_profile_id": profile_id})
            CHAT_TURNS.labels(outcome="error", new_session=str(is_new).lower()).inc()
            yield ErrorEvent(message=STREAM_FAILURE_MESSAGE)
            return

        input_tokens = (usage.input_tokens or 0) if usage else 0
        output_tokens = (usage.output_tokens or 0) if usage else 0
        model_used = (usage.model if usage else None) or self.model.model_name
        assistant = self._finish_turn(context, "".join(parts), input_tokens, output_tokens, model_used, usage is not None)
        yield DoneEvent(message_id=assistant.id, created_at=assistant.created_at)

    async def send_message(self, profile_id: str, message: str, session_id: str | None = None) -> TurnResult:
        """Non-streaming turn; session and provider errors propagate to the caller."""
        session, is_new = self._resolve_session(profile_id, session_id)
        context = await self._prepare(session, is_new, message)
        try:
            completion = await self.model.complete(context.prompt, self._tools())
        except Exception:
            CHAT_TURNS.labels(outcome="error", new_session=str(is_new).lower()).inc()
            raise
        assistant = self._finish_turn(
            context,
            completion.content,
            completion.input_tokens,
            completion.output_tokens,
            completion.model or self.model.model_name,
            True,
        )
        return TurnResult(session=context.session, is_new_session=is_new, message=assistant)

    # Sessions and profiles --------------------------------------------

    def list_sessions(self, profile_id: str, limit: int = 50) -> list[ConversationSession]:
        return self.conversations.list_sessions(profile_id, limit=limit)

    def get_conversation(self, profile_id: str, session_id: str) -> tuple[ConversationSession, list[Message]]:
        session = self._owned_session(profile_id, session_id)
        return session, self.conversations.list_messages(session.id)

    def delete_session(self, profile_id: str, session_id: str) -> None:
        session = self._owned_session(profile_id, session_id)
        self.conversations.soft_delete_session(session.id)
        logger.info("Deleted session %s", session.id, extra={"ctx_profile_id": profile_id})

    def get_learner_profile(self, profile_id: str) -> LearnerProfile | None:
        return self.conversations.get_profile(profile_id)

    def update_learner_profile(self, profile_id: str, **fields: Any) -> LearnerProfile:
        profile = self.conversations.get_profile(profile_id) or LearnerProfile(profile_id=profile_id)
        for name, value in fields.items():
            if not hasattr(profile, name) or name in ("profile_id", "created_at", "updated_at"):
                raise ValueError(f"Unknown learner profile field: {name}")
            setattr(profile, name, value)
        return self.conversations.upsert_profile(profile)

    # Internal helpers -------------------------------------------------

    def _resolve_session(self, profile_id: str, session_id: str | None) -> tuple[ConversationSession, bool]:
        if session_id is None:
            session = self.conversations.create_session(profile_id)
            if self.extraction_worker is not None:
                # Earlier sessions are now complete; the new one is excluded until it has content.
                self.extraction_worker.enqueue(
                    MemoryExtractionRequest(profile_id=profile_id, exclude_session_id=session.id)
                )
            return session, True
        return self._owned_session(profile_id, session_id), False

    def _owned_session(self, profile_id: str, session_id: str) -> ConversationSession:
        session = self.conversations.get_session(session_id)
        if session is None or session.is_deleted:
            raise SessionNotFoundError(session_id)
        if session.profile_id != profile_id:
            raise SessionAccessDeniedError(session_id, profile_id)
        return session

    async def _prepare(self, session: ConversationSession, is_new: bool, message: str) -> TurnContext:
        user_message = self.conversations.add_message(session.id, MessageRole.USER, message)
        history = self.conversations.recent_messages(
            session.id,
            self.settings.max_context_messages,
            before_message_id=user_message.id,
        )
        memories = await self.memories.get_context_memories(session.profile_id, message)
        profile = self.conversations.get_profile(session.profile_id)
        system_prompt = build_system_prompt(profile, format_memory_context(memories))

        prompt = [ChatMessage(role="system", content=system_prompt)]
        prompt.extend(
            ChatMessage(role=item.role.value, content=item.content)
            for item in history
            if item.role is not MessageRole.SYSTEM
        )
        prompt.append(ChatMessage(role="user", content=message))
        return TurnContext(session=session, is_new_session=is_new, user_message=user_message, prompt=prompt)

    def _finish_turn(
        self,
        context: TurnContext,
        content: str,
        input_tokens: int,
        output_tokens: int,
        model_used: str,
        has_usage: bool,
    ) -> Message:
        session = context.session
        assistant = self.conversations.add_message(
            session.id,
            MessageRole.ASSISTANT,
            content,
            tokens_used=input_tokens + output_tokens if has_usage else None,
            model_used=model_used,
        )
        self.conversations.touch_session(session.id)
        if context.is_new_session:
            title = generate_title(context.user_message.content, self.settings.title_max_length)
            self.conversations.set_title(session.id, title)
            session.title = title
        CHAT_TOKENS.labels(direction="input").inc(input_tokens)
        CHAT_TOKENS.labels(direction="output").inc(output_tokens)
        CHAT_TURNS.labels(outcome="completed", new_session=str(context.is_new_session).lower()).inc()
        return assistant

    def _save_partial(self, session: ConversationSession, is_new: bool, parts: list[str]) -> None:
        content = "".join(parts)
        CHAT_TURNS.labels(outcome="cancelled", new_session=str(is_new).lower()).inc()
        if not content:
            return
        try:
            self.conversations.add_message(
                session.id,
                MessageRole.ASSISTANT,
                content,
                model_used=self.model.model_name,
            )
            self.conversations.touch_session(session.id)
        except Exception:
            logger.exception("Could not store partial answer", extra={"ctx_session_id": session.id})

    def _tools(self) -> list[Tool]:
        if self.knowledge_base is not None and self.settings.knowledge_base_enabled:
            return [self.knowledge_base]
        return []


__all__ = ["ChatService", "TurnResult", "generate_title", "STREAM_FAILURE_MESSAGE"]
