"""Administrative routes: learner profile, memories and metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from context_coach.api.dependencies import get_chat_service, get_memory_store, get_profile_id
from context_coach.chat.assembler import ChatService
from context_coach.core.metrics import metrics_response
from context_coach.db.memory_store import MemoryStore
from context_coach.models.dto import LearnerProfileRequest, LearnerProfileResponse, MemoryResponse
from context_coach.models.entities import MemoryCategory

router = APIRouter()


@router.get("/memories", response_model=list[MemoryResponse], summary="List the learner's active memories")
async def list_memories(
    category: MemoryCategory | None = None,
    profile_id: str = Depends(get_profile_id),
    store: MemoryStore = Depends(get_memory_store),
) -> list[MemoryResponse]:
    return [MemoryResponse.from_entity(memory) for memory in store.list_active(profile_id, category)]


@router.get("/profile", response_model=LearnerProfileResponse, summary="Get the learner profile")
async def get_profile(
    profile_id: str = Depends(get_profile_id),
    service: ChatService = Depends(get_chat_service),
) -> LearnerProfileResponse:
    profile = service.get_learner_profile(profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return LearnerProfileResponse.from_entity(profile)


@router.put("/profile", response_model=LearnerProfileResponse, summary="Create or replace the learner profile")
async def put_profile(
    request: LearnerProfileRequest,
    profile_id: str = Depends(get_profile_id),
    service: ChatService = Depends(get_chat_service),
) -> LearnerProfileResponse:
    profile = service.update_learner_profile(profile_id, **request.model_dump())
    return LearnerProfileResponse.from_entity(profile)


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
