"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import Base64Bytes, BaseModel, Field

from context_coach.models.entities import (
    ContentIngestionJob,
    ContentSource,
    ConversationSession,
    IngestionStatus,
    LearnerProfile,
    Memory,
    MemoryCategory,
    Message,
    MessageRole,
)


class _IngestRequest(BaseModel):
    title: str = Field(min_length=1)
    author: str | None = None
    technology: str | None = None
    parent_document_id: str | None = Field(
        default=None,
        description="Stable document id; defaults to a hash of the content or URL",
    )


class PdfIngestRequest(_IngestRequest):
    content_base64: Base64Bytes = Field(description="PDF file, base64 encoded")


class TranscriptIngestRequest(_IngestRequest):
    transcript: str = Field(min_length=1)
    source_url: str | None = None


class DocsIngestRequest(_IngestRequest):
    url: str = Field(min_length=1)
    max_pages: int | None = Field(default=None, ge=1, le=1000)


class ArticleIngestRequest(_IngestRequest):
    markdown: str = Field(min_length=1)
    source_url: str | None = None


class JobResponse(BaseModel):
    id: str
    source: ContentSource
    status: IngestionStatus
    title: str
    parent_document_id: str
    source_url: str | None
    max_pages: int | None
    author: str | None
    technology: str | None
    pages_processed: int
    total_pages: int
    chunks_created: int
    error_message: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None

    @classmethod
    def from_entity(cls, job: ContentIngestionJob) -> "JobResponse":
        return cls(
            id=job.id,
            source=job.source,
            status=job.status,
            title=job.title,
            parent_document_id=job.parent_document_id,
            source_url=job.source_url,
            max_pages=job.max_pages,
            author=job.author,
            technology=job.technology,
            pages_processed=job.pages_processed,
            total_pages=job.total_pages,
            chunks_created=job.chunks_created,
            error_message=job.error_message,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    source: ContentSource | None = None
    technology: str | None = None
    author: str | None = None
    limit: int = Field(default=5, ge=1, le=50)
    min_similarity: float = Field(default=0.7, ge=-1.0, le=1.0)


class SearchHit(BaseModel):
    chunk_id: str
    source: ContentSource
    title: str
    content: str
    similarity: float
    author: str | None = None
    technology: str | None = None
    parent_document_id: str | None = None
    chunk_index: int | None = None


class SearchResponse(BaseModel):
    results: list[SearchHit]


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    session_id: str | None = None


class ChatResponse(BaseModel):
    session_id: str
    is_new_session: bool
    message_id: str
    content: str
    created_at: datetime
    tokens_used: int | None = None


class SessionResponse(BaseModel):
    id: str
    title: str | None
    created_at: datetime
    last_message_at: datetime

    @classmethod
    def from_entity(cls, session: ConversationSession) -> "SessionResponse":
        return cls(
            id=session.id,
            title=session.title,
            created_at=session.created_at,
            last_message_at=session.last_message_at,
        )


class MessageResponse(BaseModel):
    id: str
    role: MessageRole
    content: str
    created_at: datetime
    tokens_used: int | None = None
    model_used: str | None = None

    @classmethod
    def from_entity(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            role=message.role,
            content=message.content,
            created_at=message.created_at,
            tokens_used=message.tokens_used,
            model_used=message.model_used,
        )


class ConversationResponse(BaseModel):
    session: SessionResponse
    messages: list[MessageResponse]


class MemoryResponse(BaseModel):
    id: str
    category: MemoryCategory
    content: str
    importance: int
    occurrence_count: int
    created_at: datetime
    source_session_id: str | None = None

    @classmethod
    def from_entity(cls, memory: Memory) -> "MemoryResponse":
        return cls(
            id=memory.id,
            category=memory.category,
            content=memory.content,
            importance=memory.importance,
            occurrence_count=memory.occurrence_count,
            created_at=memory.created_at,
            source_session_id=memory.source_session_id,
        )


class LearnerProfileRequest(BaseModel):
    current_role: str | None = None
    experience_years: int | None = Field(default=None, ge=0, le=80)
    primary_tech_stack: list[str] = Field(default_factory=list)
    current_project: str | None = None
    learning_goals: list[str] = Field(default_factory=list)
    learning_style: str | None = None
    preferred_pace: str | None = None
    identified_strengths: list[str] = Field(default_factory=list)
    identified_struggles: list[str] = Field(default_factory=list)


class LearnerProfileResponse(LearnerProfileRequest):
    profile_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_entity(cls, profile: LearnerProfile) -> "LearnerProfileResponse":
        return cls(
            profile_id=profile.profile_id,
            current_role=profile.current_role,
            experience_years=profile.experience_years,
            primary_tech_stack=list(profile.primary_tech_stack),
            current_project=profile.current_project,
            learning_goals=list(profile.learning_goals),
            learning_style=profile.learning_style,
            preferred_pace=profile.preferred_pace,
            identified_strengths=list(profile.identified_strengths),
            identified_struggles=list(profile.identified_struggles),
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


# Streaming chat events --------------------------------------------------


class StartEvent(BaseModel):
    type: Literal["start"] = "start"
    session_id: str
    is_new_session: bool


class ContentEvent(BaseModel):
    type: Literal["content"] = "content"
    text: str


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    message_id: str
    created_at: datetime


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


ChatEvent = Annotated[Union[StartEvent, ContentEvent, DoneEvent, ErrorEvent], Field(discriminator="type")]


__all__ = [
    "PdfIngestRequest",
    "TranscriptIngestRequest",
    "DocsIngestRequest",
    "ArticleIngestRequest",
    "JobResponse",
    "SearchRequest",
    "SearchHit",
    "SearchResponse",
    "ChatRequest",
    "ChatResponse",
    "SessionResponse",
    "MessageResponse",
    "ConversationResponse",
    "MemoryResponse",
    "LearnerProfileRequest",
    "LearnerProfileResponse",
    "StartEvent",
    "ContentEvent",
    "DoneEvent",
    "ErrorEvent",
    "ChatEvent",
]
