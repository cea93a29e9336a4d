"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from context_coach.core.errors import InvalidJobTransitionError
from context_coach.utils.time import utc_now


class ContentSource(str, Enum):
    PDF = "pdf"
    VIDEO_TRANSCRIPT = "video_transcript"
    OFFICIAL_DOCS = "official_docs"
    ARTICLE = "article"


class IngestionStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MemoryCategory(str, Enum):
    TOPIC_DISCUSSED = "topic_discussed"
    CONCEPT_EXPLAINED = "concept_explained"
    STRUGGLE_IDENTIFIED = "struggle_identified"
    STRENGTH_DEMONSTRATED = "strength_demonstrated"
    QUESTION_ASKED = "question_asked"
    CURRENT_FOCUS = "current_focus"
    PREFERRED_EXAMPLES = "preferred_examples"

    @property
    def is_single(self) -> bool:
        """At most one active memory per profile may exist in this category."""
        return self in SINGLE_CARDINALITY_CATEGORIES


SINGLE_CARDINALITY_CATEGORIES = frozenset({MemoryCategory.CURRENT_FOCUS, MemoryCategory.PREFERRED_EXAMPLES})


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(slots=True)
class ContentChunk:
    id: str
    source: ContentSource
    source_identifier: str
    title: str
    content: str
    embedding: bytes
    token_count: int
    author: str | None = None
    technology: str | None = None
    parent_document_id: str | None = None
    chunk_index: int | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class ContentIngestionJob:
    """Ingestion job with its lifecycle rules.

    ``queued -> processing -> completed | failed``. A queued job may also fail
    directly, e.g. a docs job submitted without a URL.
    """

    id: str
    source: ContentSource
    title: str
    parent_document_id: str
    status: IngestionStatus = IngestionStatus.QUEUED
    source_url: str | None = None
    max_pages: int | None = None
    author: str | None = None
    technology: str | None = None
    pages_processed: int = 0
    total_pages: int = 0
    chunks_created: int = 0
    error_message: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in (IngestionStatus.COMPLETED, IngestionStatus.FAILED)

    def mark_processing(self) -> None:
        self._require(IngestionStatus.PROCESSING, IngestionStatus.QUEUED)
        self.status = IngestionStatus.PROCESSING
        self.started_at = utc_now()

    def update_progress(self, pages_processed: int, total_pages: int | None = None) -> None:
        self._require(IngestionStatus.PROCESSING, IngestionStatus.PROCESSING)
        self.pages_processed = pages_processed
        if total_pages is not None:
            self.total_pages = total_pages

    def mark_completed(self, chunks_created: int) -> None:
        self._require(IngestionStatus.COMPLETED, IngestionStatus.PROCESSING)
        self.status = IngestionStatus.COMPLETED
        self.chunks_created = chunks_created
        self.completed_at = utc_now()

    def mark_failed(self, error_message: str) -> None:
        self._require(IngestionStatus.FAILED, IngestionStatus.QUEUED, IngestionStatus.PROCESSING)
        self.status = IngestionStatus.FAILED
        self.error_message = error_message
        self.completed_at = utc_now()

    def _require(self, target: IngestionStatus, *allowed: IngestionStatus) -> None:
        if self.status not in allowed:
            raise InvalidJobTransitionError(self.id, self.status.value, target.value)


@dataclass(slots=True)
class Memory:
    id: str
    profile_id: str
    category: MemoryCategory
    content: str
    source_session_id: str | None = None
    embedding: bytes | None = None
    importance: int = 3
    occurrence_count: int = 1
    created_at: datetime = field(default_factory=utc_now)
    superseded_at: datetime | None = None
    superseded_by_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.superseded_at is None


@dataclass(slots=True)
class ConversationSession:
    id: str
    profile_id: str
    title: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    last_message_at: datetime = field(default_factory=utc_now)
    is_deleted: bool = False
    last_memory_extraction_at: datetime | None = None
    last_processed_message_id: str | None = None


@dataclass(slots=True)
class Message:
    id: str
    session_id: str
    role: MessageRole
    content: str
    created_at: datetime = field(default_factory=utc_now)
    tokens_used: int | None = None
    model_used: str | None = None


@dataclass(slots=True)
class LearnerProfile:
    profile_id: str
    current_role: str | None = None
    experience_years: int | None = None
    primary_tech_stack: list[str] = field(default_factory=list)
    current_project: str | None = None
    learning_goals: list[str] = field(default_factory=list)
    learning_style: str | None = None
    preferred_pace: str | None = None
    identified_strengths: list[str] = field(default_factory=list)
    identified_struggles: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True, frozen=True)
class CachedChunk:
    """Read-only projection of a content chunk held by the embedding cache."""

    id: str
    source: ContentSource
    title: str
    content: str
    embedding: tuple[float, ...]
    author: str | None
    technology: str | None
    parent_document_id: str | None
    chunk_index: int | None


__all__ = [
    "ContentSource",
    "IngestionStatus",
    "MemoryCategory",
    "MessageRole",
    "SINGLE_CARDINALITY_CATEGORIES",
    "ContentChunk",
    "ContentIngestionJob",
    "Memory",
    "ConversationSession",
    "Message",
    "LearnerProfile",
    "CachedChunk",
]
