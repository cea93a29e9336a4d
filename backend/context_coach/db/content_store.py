"""Persistence for content chunks and ingestion jobs."""

from __future__ import annotations

import sqlite3
from typing import Sequence

from context_coach.db.sqlite import SQLiteDatabase
from context_coach.models.entities import (
    ContentChunk,
    ContentIngestionJob,
    ContentSource,
    IngestionStatus,
)
from context_coach.utils.time import from_ms, now_ms, to_ms

_CHUNK_COLUMNS = (
    "id, source, source_identifier, title, content, embedding, token_count, author, technology, "
    "parent_document_id, chunk_index, created_at, updated_at"
)

_JOB_COLUMNS = (
    "id, source, status, title, parent_document_id, source_url, max_pages, author, technology, "
    "pages_processed, total_pages, chunks_created, error_message, created_at, started_at, completed_at"
)


class ContentStore:
    """Repository for ``content_chunks`` and ``ingestion_jobs``."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    # Chunks -----------------------------------------------------------

    def find_chunk(self, source: ContentSource, source_identifier: str) -> ContentChunk | None:
        """Look a chunk up by its idempotency key."""
        row = self.db.query_one(
            f"SELECT {_CHUNK_COLUMNS} FROM content_chunks WHERE source = ? AND source_identifier = ?",
            [source.value, source_identifier],
        )
        return _row_to_chunk(row) if row else None

    def list_chunks(self, parent_document_id: str | None = None) -> list[ContentChunk]:
        if parent_document_id is None:
            rows = self.db.query(f"SELECT {_CHUNK_COLUMNS} FROM content_chunks ORDER BY id")
        else:
            rows = self.db.query(
                f"SELECT {_CHUNK_COLUMNS} FROM content_chunks WHERE parent_document_id = ? ORDER BY chunk_index",
                [parent_document_id],
            )
        return [_row_to_chunk(row) for row in rows]

    def count_chunks(self, parent_document_id: str | None = None) -> int:
        if parent_document_id is None:
            row = self.db.query_one("SELECT COUNT(*) AS count FROM content_chunks")
        else:
            row = self.db.query_one(
                "SELECT COUNT(*) AS count FROM content_chunks WHERE parent_document_id = ?",
                [parent_document_id],
            )
        return int(row["count"]) if row else 0

    def upsert_chunk(self, chunk: ContentChunk) -> None:
        """Insert a chunk or overwrite the one sharing its (source, source_identifier)."""
        with self.db.transaction() as cursor:
            cursor.execute(
                f"""
                INSERT INTO content_chunks ({_CHUNK_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (source, source_identifier) DO UPDATE SET
                  title = excluded.title,
                  content = excluded.content,
                  embedding = excluded.embedding,
                  token_count = excluded.token_count,
                  author = excluded.author,
                  technology = excluded.technology,
                  parent_document_id = excluded.parent_document_id,
                  chunk_index = excluded.chunk_index,
                  updated_at = excluded.updated_at
                """,
                _chunk_params(chunk),
            )

    def replace_document_chunks(self, parent_document_id: str, chunks: Sequence[ContentChunk]) -> int:
        """Atomically swap every chunk of a parent document for ``chunks``.

        The delete and all inserts share one transaction; a failure on any
        insert leaves the previous chunks untouched.
        """
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM content_chunks WHERE parent_document_id = ?", [parent_document_id])
            for chunk in chunks:
                self._insert_chunk(cursor, chunk)
        return len(chunks)

    def delete_by_parent(self, parent_document_id: str) -> int:
        return self.db.write("DELETE FROM content_chunks WHERE parent_document_id = ?", [parent_document_id])

    def _insert_chunk(self, cursor: sqlite3.Cursor, chunk: ContentChunk) -> None:
        cursor.execute(
            f"INSERT INTO content_chunks ({_CHUNK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            _chunk_params(chunk),
        )

    # Jobs -------------------------------------------------------------

    def create_job(self, job: ContentIngestionJob) -> ContentIngestionJob:
        self.db.write(
            f"INSERT INTO ingestion_jobs ({_JOB_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                job.id,
                job.source.value,
                job.status.value,
                job.title,
                job.parent_document_id,
                job.source_url,
                job.max_pages,
                job.author,
                job.technology,
                job.pages_processed,
                job.total_pages,
                job.chunks_created,
                job.error_message,
                to_ms(job.created_at),
                to_ms(job.started_at),
                to_ms(job.completed_at),
            ],
        )
        return job

    def save_job(self, job: ContentIngestionJob) -> None:
        """Persist the mutable lifecycle fields of a job and commit immediately."""
        self.db.write(
            """
            UPDATE ingestion_jobs SET
              status = ?, pages_processed = ?, total_pages = ?, chunks_created = ?,
              error_message = ?, started_at = ?, completed_at = ?
            WHERE id = ?
            """,
            [
                job.status.value,
                job.pages_processed,
                job.total_pages,
                job.chunks_created,
                job.error_message,
                to_ms(job.started_at),
                to_ms(job.completed_at),
                job.id,
            ],
        )

    def get_job(self, job_id: str) -> ContentIngestionJob | None:
        row = self.db.query_one(f"SELECT {_JOB_COLUMNS} FROM ingestion_jobs WHERE id = ?", [job_id])
        return _row_to_job(row) if row else None

    def list_jobs(self, status: IngestionStatus | None = None, limit: int = 100) -> list[ContentIngestionJob]:
        if status is None:
            rows = self.db.query(
                f"SELECT {_JOB_COLUMNS} FROM ingestion_jobs ORDER BY created_at DESC, rowid DESC LIMIT ?",
                [limit],
            )
        else:
            rows = self.db.query(
                f"SELECT {_JOB_COLUMNS} FROM ingestion_jobs WHERE status = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                [status.value, limit],
            )
        return [_row_to_job(row) for row in rows]

    def delete_job(self, job_id: str) -> bool:
        return self.db.write("DELETE FROM ingestion_jobs WHERE id = ?", [job_id]) > 0


def _chunk_params(chunk: ContentChunk) -> list[object]:
    return [
        chunk.id,
        chunk.source.value,
        chunk.source_identifier,
        chunk.title,
        chunk.content,
        chunk.embedding,
        chunk.token_count,
        chunk.author,
        chunk.technology,
        chunk.parent_document_id,
        chunk.chunk_index,
        to_ms(chunk.created_at),
        to_ms(chunk.updated_at) or now_ms(),
    ]


def _row_to_chunk(row: sqlite3.Row) -> ContentChunk:
    return ContentChunk(
        id=row["id"],
        source=ContentSource(row["source"]),
        source_identifier=row["source_identifier"],
        title=row["title"],
        content=row["content"],
        embedding=bytes(row["embedding"]),
        token_count=row["token_count"],
        author=row["author"],
        technology=row["technology"],
        parent_document_id=row["parent_document_id"],
        chunk_index=row["chunk_index"],
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _row_to_job(row: sqlite3.Row) -> ContentIngestionJob:
    return ContentIngestionJob(
        id=row["id"],
        source=ContentSource(row["source"]),
        status=IngestionStatus(row["status"]),
        title=row["title"],
        parent_document_id=row["parent_document_id"],
        source_url=row["source_url"],
        max_pages=row["max_pages"],
        author=row["author"],
        technology=row["technology"],
        pages_processed=row["pages_processed"],
        total_pages=row["total_pages"],
        chunks_created=row["chunks_created"],
        error_message=row["error_message"],
        created_at=from_ms(row["created_at"]),
        started_at=from_ms(row["started_at"]),
        completed_at=from_ms(row["completed_at"]),
    )


__all__ = ["ContentStore"]
