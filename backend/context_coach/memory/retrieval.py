"""Select the memories that go into a chat turn's context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from context_coach.core.config import Settings
from context_coach.db.memory_store import MemoryStore
from context_coach.ingest.embeddings import EmbeddingService, cosine_similarity, deserialize_embedding
from context_coach.models.entities import Memory, MemoryCategory


@dataclass(slots=True)
class ScoredMemory:
    memory: Memory
    score: float
    reason: str
    similarity: float | None = None


def merge_memories(
    recent: Sequence[Memory],
    important: Sequence[Memory],
    semantic: Sequence[tuple[Memory, float]],
    max_total: int = 20,
    semantic_boost: float = 1.0,
    recent_weight: float = 0.5,
) -> list[ScoredMemory]:
    """Combine the three memory sets into one ranked, de-duplicated list.

    Semantic matches score ``similarity + semantic_boost``, important memories
    ``importance / 5`` and recent memories decay linearly from
    ``recent_weight`` by position. A memory present in several sets keeps the
    score of the first set it appears in, in the order semantic, important,
    recent.
    """
    seen: set[str] = set()
    merged: list[ScoredMemory] = []

    for memory, similarity in sorted(semantic, key=lambda item: item[1], reverse=True):
        if memory.id not in seen:
            seen.add(memory.id)
            merged.append(ScoredMemory(memory, similarity + semantic_boost, "semantic", similarity))

    for memory in sorted(important, key=lambda item: item.importance, reverse=True):
        if memory.id not in seen:
            seen.add(memory.id)
            merged.append(ScoredMemory(memory, memory.importance / 5.0, "important"))

    count = len(recent)
    for index, memory in enumerate(recent):
        if memory.id not in seen:
            seen.add(memory.id)
            merged.append(ScoredMemory(memory, (count - index) / count * recent_weight, "recent"))

    merged.sort(key=lambda item: item.score, reverse=True)
    return merged[:max_total]


class MemoryRetriever:
    def __init__(self, store: MemoryStore, embeddings: EmbeddingService, settings: Settings) -> None:
        self.store = store
        self.embeddings = embeddings
        self.settings = settings

    async def get_context_memories(self, profile_id: str, current_message: str) -> list[ScoredMemory]:
        settings = self.settings
        recent = self.store.recent(profile_id, settings.memory_recent_count)
        important = self.store.high_importance(
            profile_id,
            settings.memory_importance_threshold,
            settings.memory_importance_limit,
        )
        semantic = await self.semantic_matches(profile_id, current_message)
        return merge_memories(
            recent,
            important,
            semantic,
            max_total=settings.memory_max_total,
            semantic_boost=settings.memory_semantic_boost,
            recent_weight=settings.memory_recent_weight,
        )

    async def semantic_matches(self, profile_id: str, current_message: str) -> list[tuple[Memory, float]]:
        candidates = self.store.with_embeddings(profile_id)
        # The message is only embedded when there is something to compare it with.
        if not candidates or not current_message.strip():
            return []
        query = await self.embeddings.embed(current_message)
        scored: list[tuple[Memory, float]] = []
        for memory in candidates:
            if memory.embedding is None:
                continue
            similarity = cosine_similarity(query, deserialize_embedding(memory.embedding))
            if similarity >= self.settings.memory_min_similarity:
                scored.append((memory, similarity))
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[: self.settings.memory_semantic_limit]


_SECTION_TITLES = {
    MemoryCategory.CURRENT_FOCUS: "Current focus",
    MemoryCategory.PREFERRED_EXAMPLES: "Preferred examples",
    MemoryCategory.STRUGGLE_IDENTIFIED: "Struggles",
    MemoryCategory.STRENGTH_DEMONSTRATED: "Strengths",
    MemoryCategory.TOPIC_DISCUSSED: "Topics discussed before",
    MemoryCategory.CONCEPT_EXPLAINED: "Concepts already explained",
    MemoryCategory.QUESTION_ASKED: "Earlier questions",
}


def format_memory_context(memories: Sequence[ScoredMemory | Memory]) -> str:
    """Render memories grouped by category, in ranking order within each group."""
    grouped: dict[MemoryCategory, list[str]] = {}
    for item in memories:
        memory = item.memory if isinstance(item, ScoredMemory) else item
        grouped.setdefault(memory.category, []).append(memory.content)
    if not grouped:
        return ""
    lines = ["## What you remember about this learner"]
    for category, title in _SECTION_TITLES.items():
        contents = grouped.get(category)
        if not contents:
            continue
        lines.append(f"{title}:")
        lines.extend(f"- {content}" for content in contents)
    return "\n".join(lines)


__all__ = ["ScoredMemory", "merge_memories", "MemoryRetriever", "format_memory_context"]
