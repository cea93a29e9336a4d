"""Retrieval components."""

from .cache import ContentEmbeddingCache
from .search import SearchFilters, SearchResult, SemanticSearch

__all__ = [
    "ContentEmbeddingCache",
    "SearchFilters",
    "SearchResult",
    "SemanticSearch",
]
