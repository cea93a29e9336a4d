"""Background worker that turns finished conversation turns into memories."""

from __future__ import annotations

from dataclasses import dataclass

from context_coach.core.logging import get_logger
from context_coach.core.metrics import MEMORIES_CREATED, MEMORY_EXTRACTIONS
from context_coach.core.workers import BackgroundConsumer
from context_coach.db.conversation_store import ConversationStore
from context_coach.db.memory_store import MemoryStore
from context_coach.ingest.embeddings import EmbeddingService
from context_coach.memory.extractor import MemoryCandidate, MemoryExtractor
from context_coach.models.entities import ConversationSession, Memory
from context_coach.utils import ids

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class MemoryExtractionRequest:
    """Extract memories for a profile's sessions, skipping ``exclude_session_id``."""

    profile_id: str
    exclude_session_id: str | None = None


@dataclass(slots=True)
class ExtractionResult:
    sessions_processed: int = 0
    memories_created: int = 0
    memories_reinforced: int = 0
    memories_superseded: int = 0


class MemoryExtractionWorker(BackgroundConsumer[MemoryExtractionRequest]):
    """Checkpointed per-profile extraction; running twice for one profile is harmless."""

    name = "memory-extraction-worker"

    def __init__(
        self,
        conversations: ConversationStore,
        memories: MemoryStore,
        extractor: MemoryExtractor,
        embeddings: EmbeddingService,
    ) -> None:
        super().__init__()
        self.conversations = conversations
        self.memories = memories
        self.extractor = extractor
        self.embeddings = embeddings

    async def handle(self, request: MemoryExtractionRequest) -> None:
        try:
            result = await self.extract_for_profile(request.profile_id, request.exclude_session_id)
        except Exception:
            MEMORY_EXTRACTIONS.labels(status="failed").inc()
            raise
        MEMORY_EXTRACTIONS.labels(status="completed").inc()
        logger.info(
            "Extracted memories for %s: %s sessions, %s new",
            request.profile_id,
            result.sessions_processed,
            result.memories_created,
            extra={"ctx_profile_id": request.profile_id},
        )

    async def extract_for_profile(self, profile_id: str, exclude_session_id: str | None = None) -> ExtractionResult:
        result = ExtractionResult()
        sessions = self.conversations.sessions_needing_extraction(profile_id, exclude_session_id)
        for session in sessions:
            await self._process_session(session, result)
            result.sessions_processed += 1
        return result

    async def _process_session(self, session: ConversationSession, result: ExtractionResult) -> None:
        messages = self.conversations.messages_after(session.id, session.last_processed_message_id)
        candidates = await self.extractor.extract(messages)
        for candidate in candidates:
            await self.apply_candidate(session.profile_id, session.id, candidate, result)
        last_id = messages[-1].id if messages else None
        self.conversations.update_extraction_checkpoint(session.id, last_id)

    async def apply_candidate(
        self,
        profile_id: str,
        session_id: str | None,
        candidate: MemoryCandidate,
        result: ExtractionResult | None = None,
    ) -> Memory:
        """Reinforce, supersede or create a memory for one candidate."""
        result = result if result is not None else ExtractionResult()
        duplicates = self.memories.find_active(profile_id, candidate.category, candidate.content)
        if duplicates:
            result.memories_reinforced += 1
            return self.memories.record_occurrence(duplicates[0], candidate.importance)

        memory = Memory(
            id=ids.new_id(ids.MEMORY),
            profile_id=profile_id,
            source_session_id=session_id,
            category=candidate.category,
            content=candidate.content,
            embedding=await self.embeddings.embed_bytes(candidate.content),
            importance=candidate.importance,
        )
        active = self.memories.find_active(profile_id, candidate.category) if candidate.category.is_single else []
        if active:
            self.memories.supersede(active[0], memory)
            result.memories_superseded += 1
        else:
            self.memories.create(memory)
        result.memories_created += 1
        MEMORIES_CREATED.inc()
        return memory


__all__ = ["MemoryExtractionRequest", "ExtractionResult", "MemoryExtractionWorker"]
