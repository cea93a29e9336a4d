"""Chat and conversation API routes."""

from __future__ import annotations

from typing import AsyncIterator

import orjson
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from context_coach.api.dependencies import get_chat_service, get_profile_id
from context_coach.chat.assembler import ChatService
from context_coach.core.errors import ProviderError, SessionAccessDeniedError, SessionNotFoundError
from context_coach.core.logging import get_logger
from context_coach.models.dto import (
    ChatEvent,
    ChatRequest,
    ChatResponse,
    ConversationResponse,
    MessageResponse,
    SessionResponse,
)

logger = get_logger(__name__)

router = APIRouter()


@router.post("/chat", response_model=ChatResponse, summary="Send a message and wait for the full answer")
async def chat(
    request: ChatRequest,
    profile_id: str = Depends(get_profile_id),
    service: ChatService = Depends(get_chat_service),
) -> ChatResponse:
    try:
        result = await service.send_message(profile_id, request.message, request.session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SessionAccessDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ProviderError as exc:
        logger.warning("Chat provider failed: %s", exc, extra={"ctx_profile_id": profile_id})
        raise HTTPException(status_code=502, detail="Chat provider request failed") from exc
    return ChatResponse(
        session_id=result.session.id,
        is_new_session=result.is_new_session,
        message_id=result.message.id,
        content=result.message.content,
        created_at=result.message.created_at,
        tokens_used=result.message.tokens_used,
    )


@router.post("/chat/stream", summary="Send a message and stream the answer as server-sent events")
async def chat_stream(
    request: ChatRequest,
    profile_id: str = Depends(get_profile_id),
    service: ChatService = Depends(get_chat_service),
) -> StreamingResponse:
    events = service.stream_turn(profile_id, request.message, request.session_id)
    return StreamingResponse(_sse(events), media_type="text/event-stream")


async def _sse(events: AsyncIterator[ChatEvent]) -> AsyncIterator[bytes]:
    async for event in events:
        yield b"data: " + orjson.dumps(event.model_dump(mode="json")) + b"\n\n"


@router.get("/sessions", response_model=list[SessionResponse], summary="List the learner's conversations")
async def list_sessions(
    limit: int = 50,
    profile_id: str = Depends(get_profile_id),
    service: ChatService = Depends(get_chat_service),
) -> list[SessionResponse]:
    return [SessionResponse.from_entity(session) for session in service.list_sessions(profile_id, limit=limit)]


@router.get("/sessions/{session_id}", response_model=ConversationResponse, summary="Get a conversation")
async def get_session(
    session_id: str,
    profile_id: str = Depends(get_profile_id),
    service: ChatService = Depends(get_chat_service),
) -> ConversationResponse:
    try:
        session, messages = service.get_conversation(profile_id, session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SessionAccessDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    return ConversationResponse(
        session=SessionResponse.from_entity(session),
        messages=[MessageResponse.from_entity(message) for message in messages],
    )


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a conversation")
async def delete_session(
    session_id: str,
    profile_id: str = Depends(get_profile_id),
    service: ChatService = Depends(get_chat_service),
) -> None:
    try:
        service.delete_session(profile_id, session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SessionAccessDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


__all__ = ["router"]
