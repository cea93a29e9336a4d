"""LLM-backed derivation of candidate memories from a conversation transcript."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import orjson

from context_coach.chat.llm import ChatMessage, ChatModel
from context_coach.core.logging import get_logger
from context_coach.models.entities import MemoryCategory, Message, MessageRole

logger = get_logger(__name__)

DEFAULT_IMPORTANCE = 3
CURRENT_FOCUS_MIN_IMPORTANCE = 4

SYSTEM_PROMPT = (
    "You extract durable facts about a learner from coaching conversations and "
    "answer with JSON only. Be concise and specific."
)

_LIST_FIELDS = (
    ("topics_discussed", MemoryCategory.TOPIC_DISCUSSED),
    ("concepts_explained", MemoryCategory.CONCEPT_EXPLAINED),
    ("struggles_identified", MemoryCategory.STRUGGLE_IDENTIFIED),
    ("strengths_demonstrated", MemoryCategory.STRENGTH_DEMONSTRATED),
    ("questions_asked", MemoryCategory.QUESTION_ASKED),
)


@dataclass(slots=True, frozen=True)
class MemoryCandidate:
    category: MemoryCategory
    content: str
    importance: int = DEFAULT_IMPORTANCE


def build_transcript(messages: Sequence[Message]) -> str:
    lines = []
    for message in messages:
        speaker = "Learner" if message.role is MessageRole.USER else "Coach"
        lines.append(f"{speaker}: {message.content}\n")
    return "\n".join(lines)


def build_extraction_prompt(transcript: str) -> str:
    return f"""Read this conversation between a learner and their AI coach and list what is worth
remembering about the learner for future sessions.

Conversation:
{transcript}

Answer with a JSON object; every list may be empty:
{{
  "topics_discussed": ["..."],
  "concepts_explained": ["..."],
  "struggles_identified": ["..."],
  "strengths_demonstrated": ["..."],
  "questions_asked": ["..."],
  "current_focus": "what they are working on, or null",
  "importance_notes": {{"<item text>": 1-5}}
}}

Rules:
- one or two sentences per item at most
- only record what was actually said
- importance runs from 1 (trivia) to 5 (must remember)
- return raw JSON without code fences"""


def parse_extraction_response(content: str) -> list[MemoryCandidate]:
    """Turn the model's JSON answer into candidates; malformed answers yield nothing."""
    text = _strip_fences(content)
    try:
        payload = orjson.loads(text)
    except orjson.JSONDecodeError:
        logger.warning("Memory extraction returned invalid JSON")
        return []
    if not isinstance(payload, dict):
        return []

    notes = payload.get("importance_notes")
    notes = notes if isinstance(notes, dict) else {}
    candidates: list[MemoryCandidate] = []
    for key, category in _LIST_FIELDS:
        items = payload.get(key) or []
        if not isinstance(items, list):
            continue
        for item in items:
            if isinstance(item, str) and item.strip():
                content_text = item.strip()
                candidates.append(MemoryCandidate(category, content_text, _importance(notes, content_text)))

    focus = payload.get("current_focus")
    if isinstance(focus, str) and focus.strip():
        focus_text = focus.strip()
        importance = max(_importance(notes, focus_text), CURRENT_FOCUS_MIN_IMPORTANCE)
        candidates.append(MemoryCandidate(MemoryCategory.CURRENT_FOCUS, focus_text, importance))
    return candidates


class MemoryExtractor:
    """Ask the chat model which memories a stretch of conversation contains."""

    def __init__(self, model: ChatModel) -> None:
        self.model = model

    async def extract(self, messages: Sequence[Message]) -> list[MemoryCandidate]:
        if not messages:
            return []
        prompt = build_extraction_prompt(build_transcript(messages))
        completion = await self.model.complete(
            [ChatMessage(role="system", content=SYSTEM_PROMPT), ChatMessage(role="user", content=prompt)]
        )
        return parse_extraction_response(completion.content)


def _importance(notes: dict[str, Any], content: str) -> int:
    value = notes.get(content)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_IMPORTANCE
    return min(5, max(1, int(value)))


def _strip_fences(content: str) -> str:
    text = content.strip()
    if not text.startswith("```"):
        return text
    lines = text.split("\n")
    end = len(lines) - 1 if lines[-1].strip() == "```" else len(lines)
    return "\n".join(lines[1:end])


__all__ = [
    "MemoryCandidate",
    "MemoryExtractor",
    "build_transcript",
    "build_extraction_prompt",
    "parse_extraction_response",
]
