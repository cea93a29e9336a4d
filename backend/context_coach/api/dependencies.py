"""Shared FastAPI dependencies."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request

from context_coach.chat.assembler import ChatService
from context_coach.chat.llm import ChatModel, OpenAIChatModel
from context_coach.chat.tools import KnowledgeBaseTool
from context_coach.core.config import Settings, get_settings
from context_coach.db.content_store import ContentStore
from context_coach.db.conversation_store import ConversationStore
from context_coach.db.memory_store import MemoryStore
from context_coach.db.sqlite import SQLiteDatabase
from context_coach.ingest.embeddings import EmbeddingService, build_embedding_service
from context_coach.ingest.pipeline import IngestionCoordinator
from context_coach.ingest.sources import PageFetcher, PdfPageExtractor
from context_coach.memory.extractor import MemoryExtractor
from context_coach.memory.retrieval import MemoryRetriever
from context_coach.memory.worker import MemoryExtractionWorker
from context_coach.retrieval import ContentEmbeddingCache, SemanticSearch


@dataclass(slots=True)
class Runtime:
    """Every long-lived component of a running service, wired together."""

    settings: Settings
    db: SQLiteDatabase
    content: ContentStore
    conversations: ConversationStore
    memories: MemoryStore
    embeddings: EmbeddingService
    cache: ContentEmbeddingCache
    search: SemanticSearch
    ingestion: IngestionCoordinator
    extraction: MemoryExtractionWorker
    chat: ChatService

    async def start(self) -> None:
        await self.cache.initialize()
        self.ingestion.start()
        self.extraction.start()

    async def stop(self) -> None:
        await self.ingestion.stop()
        await self.extraction.stop()
        for resource in (self.ingestion.page_fetcher, self.embeddings.provider, self.chat.model):
            close = getattr(resource, "aclose", None)
            if close is not None:
                await close()
        self.db.close()


def build_runtime(
    settings: Settings | None = None,
    chat_model: ChatModel | None = None,
    embeddings: EmbeddingService | None = None,
    pdf_extractor: PdfPageExtractor | None = None,
    page_fetcher: PageFetcher | None = None,
) -> Runtime:
    settings = settings or get_settings()
    db = SQLiteDatabase(settings.db_path)
    db.ensure_schema()

    content = ContentStore(db)
    conversations = ConversationStore(db)
    memories = MemoryStore(db)
    embeddings = embeddings or build_embedding_service(settings)
    model = chat_model or OpenAIChatModel.from_settings(settings)

    cache = ContentEmbeddingCache(content)
    search = SemanticSearch(cache, embeddings)
    ingestion = IngestionCoordinator(
        content,
        embeddings,
        cache,
        settings,
        pdf_extractor=pdf_extractor,
        page_fetcher=page_fetcher,
    )
    extraction = MemoryExtractionWorker(conversations, memories, MemoryExtractor(model), embeddings)
    knowledge_base = KnowledgeBaseTool(
        search,
        limit=settings.kb_search_limit,
        min_similarity=settings.kb_min_similarity,
        max_result_tokens=settings.kb_max_result_tokens,
    )
    chat = ChatService(
        conversations,
        MemoryRetriever(memories, embeddings, settings),
        model,
        settings,
        extraction_worker=extraction,
        knowledge_base=knowledge_base,
    )
    return Runtime(
        settings=settings,
        db=db,
        content=content,
        conversations=conversations,
        memories=memories,
        embeddings=embeddings,
        cache=cache,
        search=search,
        ingestion=ingestion,
        extraction=extraction,
        chat=chat,
    )


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return runtime


def get_app_settings(runtime: Runtime = Depends(get_runtime)) -> Settings:
    return runtime.settings


def get_ingestion(runtime: Runtime = Depends(get_runtime)) -> IngestionCoordinator:
    return runtime.ingestion


def get_search(runtime: Runtime = Depends(get_runtime)) -> SemanticSearch:
    return runtime.search


def get_chat_service(runtime: Runtime = Depends(get_runtime)) -> ChatService:
    return runtime.chat


def get_memory_store(runtime: Runtime = Depends(get_runtime)) -> MemoryStore:
    return runtime.memories


def get_profile_id(x_profile_id: str | None = Header(default=None)) -> str:
    """The learner making the request, from the ``X-Profile-Id`` header."""
    if not x_profile_id or not x_profile_id.strip():
        raise HTTPException(status_code=400, detail="X-Profile-Id header is required")
    return x_profile_id.strip()


__all__ = [
    "Runtime",
    "build_runtime",
    "get_runtime",
    "get_app_settings",
    "get_ingestion",
    "get_search",
    "get_chat_service",
    "get_memory_store",
    "get_profile_id",
]
