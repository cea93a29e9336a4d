"""Test fixtures for Context Coach."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from context_coach.core.config import Settings  # noqa: E402
from context_coach.db.content_store import ContentStore  # noqa: E402
from context_coach.db.conversation_store import ConversationStore  # noqa: E402
from context_coach.db.memory_store import MemoryStore  # noqa: E402
from context_coach.db.sqlite import SQLiteDatabase  # noqa: E402
from context_coach.ingest.embeddings import EmbeddingService, HashedEmbeddingProvider  # noqa: E402
from fakes import FakeChatModel  # noqa: E402


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "coach.db",
        embedding_dim=256,
        embedding_retry_base_delay=0.0,
        chunk_max_tokens=40,
        chunk_max_tokens_per_line=40,
        chunk_overlap_tokens=0,
        docs_request_delay=0.0,
    )


@pytest.fixture
def db(settings: Settings):
    database = SQLiteDatabase(settings.db_path)
    database.ensure_schema()
    yield database
    database.close()


@pytest.fixture
def content_store(db: SQLiteDatabase) -> ContentStore:
    return ContentStore(db)


@pytest.fixture
def conversation_store(db: SQLiteDatabase) -> ConversationStore:
    return ConversationStore(db)


@pytest.fixture
def memory_store(db: SQLiteDatabase) -> MemoryStore:
    return MemoryStore(db)


@pytest.fixture
def embeddings(settings: Settings) -> EmbeddingService:
    return EmbeddingService(HashedEmbeddingProvider(dim=settings.embedding_dim), max_attempts=3, base_delay=0.0)


@pytest.fixture
def chat_model() -> FakeChatModel:
    return FakeChatModel()
