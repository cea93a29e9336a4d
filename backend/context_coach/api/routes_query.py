"""Search API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from context_coach.api.dependencies import get_search
from context_coach.models.dto import SearchHit, SearchRequest, SearchResponse
from context_coach.retrieval import SearchFilters, SemanticSearch

router = APIRouter()


@router.post("/search", response_model=SearchResponse, summary="Semantic search over ingested content")
async def run_search(
    request: SearchRequest,
    search: SemanticSearch = Depends(get_search),
) -> SearchResponse:
    filters = SearchFilters(source=request.source, technology=request.technology, author=request.author)
    results = await search.search(
        request.query,
        filters=filters,
        limit=request.limit,
        min_similarity=request.min_similarity,
    )
    return SearchResponse(
        results=[
            SearchHit(
                chunk_id=result.chunk_id,
                source=result.source,
                title=result.title,
                content=result.content,
                similarity=result.similarity,
                author=result.author,
                technology=result.technology,
                parent_document_id=result.parent_document_id,
                chunk_index=result.chunk_index,
            )
            for result in results
        ]
    )


__all__ = ["router"]
