"""Tools the chat model may call during a turn."""

from __future__ import annotations

from typing import Any, Sequence

from context_coach.core.logging import get_logger
from context_coach.models.entities import ContentSource
from context_coach.retrieval.search import SearchResult, SemanticSearch
from context_coach.utils.text import CHARS_PER_TOKEN

logger = get_logger(__name__)

_SOURCE_LABELS = {
    ContentSource.PDF: "Book",
    ContentSource.VIDEO_TRANSCRIPT: "Video",
    ContentSource.OFFICIAL_DOCS: "Docs",
    ContentSource.ARTICLE: "Article",
}

NO_RESULTS = "No relevant results found in the knowledge base."


class KnowledgeBaseTool:
    """Semantic search over ingested content, exposed as ``search_knowledge_base``."""

    name = "search_knowledge_base"
    description = (
        "Search the knowledge base of ingested books, official documentation, video "
        "transcripts and articles. Use it before answering questions about software "
        "concepts, patterns or tools."
    )
    parameters: dict[str, Any] = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The concept, pattern or topic to look up",
            }
        },
        "required": ["query"],
    }

    def __init__(
        self,
        search: SemanticSearch,
        limit: int = 8,
        min_similarity: float = 0.5,
        max_result_tokens: int = 2500,
    ) -> None:
        self.search = search
        self.limit = limit
        self.min_similarity = min_similarity
        self.max_result_tokens = max_result_tokens

    async def invoke(self, arguments: dict[str, Any]) -> str:
        query = str(arguments.get("query") or "").strip()
        if not query:
            return NO_RESULTS
        results = await self.search.search(query, limit=self.limit, min_similarity=self.min_similarity)
        logger.debug("Knowledge base search for %r returned %s results", query, len(results))
        return format_results(results, self.max_result_tokens * CHARS_PER_TOKEN)


def format_results(results: Sequence[SearchResult], max_chars: int) -> str:
    """Wrap results in ``<knowledge_base>`` markers within a character budget.

    Results are added whole until the next one would exceed the budget. If
    even the first result is too long it is truncated rather than dropped.
    """
    if not results:
        return NO_RESULTS

    lines = [
        "<knowledge_base>",
        "The following content comes from the knowledge base. Treat it as the primary source for your answer.",
        "",
    ]
    used = 0
    for result in results:
        entry = _entry(result, result.content)
        if used + len(entry) > max_chars:
            if used == 0:
                room = max(0, max_chars - (len(entry) - len(result.content)) - len("... [truncated]"))
                lines.append(_entry(result, result.content[:room] + "... [truncated]"))
            break
        lines.append(entry)
        used += len(entry)
    lines.append("</knowledge_base>")
    return "\n".join(lines)


def _entry(result: SearchResult, content: str) -> str:
    label = _SOURCE_LABELS.get(result.source, "Source")
    parts = [f'<source type="{label}" title="{result.title}">']
    if result.author:
        parts.append(f"Author: {result.author}")
    parts.extend(["", content, "</source>", ""])
    return "\n".join(parts)


__all__ = ["KnowledgeBaseTool", "format_results", "NO_RESULTS"]
