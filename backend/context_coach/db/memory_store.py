"""Persistence for learner memories."""

from __future__ import annotations

import sqlite3
from datetime import datetime

from context_coach.db.sqlite import SQLiteDatabase
from context_coach.models.entities import Memory, MemoryCategory
from context_coach.utils.time import from_ms, now_ms, to_ms

_COLUMNS = (
    "id, profile_id, source_session_id, category, content, embedding, importance, "
    "occurrence_count, created_at, superseded_at, superseded_by_id"
)

_ACTIVE = "superseded_at IS NULL"


class MemoryStore:
    """Repository for the ``memories`` table.

    Superseded rows are kept for history; every read here returns active
    memories unless stated otherwise.
    """

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def get(self, memory_id: str) -> Memory | None:
        row = self.db.query_one(f"SELECT {_COLUMNS} FROM memories WHERE id = ?", [memory_id])
        return _row_to_memory(row) if row else None

    def create(self, memory: Memory) -> Memory:
        with self.db.transaction() as cursor:
            _insert(cursor, memory)
        return memory

    def supersede(self, old: Memory, new: Memory) -> Memory:
        """Insert ``new`` and retire ``old`` in one transaction."""
        superseded_at = now_ms()
        with self.db.transaction() as cursor:
            # Retire first so the single-active index never sees two rows.
            cursor.execute(
                "UPDATE memories SET superseded_at = ?, superseded_by_id = ? WHERE id = ?",
                [superseded_at, new.id, old.id],
            )
            _insert(cursor, new)
        old.superseded_at = from_ms(superseded_at)
        old.superseded_by_id = new.id
        return new

    def record_occurrence(self, memory: Memory, importance: int | None = None) -> Memory:
        """Bump the occurrence count, raising importance if a higher one is given."""
        if importance is not None and importance > memory.importance:
            memory.importance = importance
        memory.occurrence_count += 1
        self.db.write(
            "UPDATE memories SET occurrence_count = ?, importance = ? WHERE id = ?",
            [memory.occurrence_count, memory.importance, memory.id],
        )
        return memory

    def find_active(self, profile_id: str, category: MemoryCategory, content: str | None = None) -> list[Memory]:
        """Active memories of one category, optionally with identical content."""
        sql = f"SELECT {_COLUMNS} FROM memories WHERE profile_id = ? AND category = ? AND {_ACTIVE}"
        params: list[object] = [profile_id, category.value]
        if content is not None:
            sql += " AND content = ?"
            params.append(content)
        rows = self.db.query(sql + " ORDER BY created_at DESC, rowid DESC", params)
        return [_row_to_memory(row) for row in rows]

    def list_active(self, profile_id: str, category: MemoryCategory | None = None) -> list[Memory]:
        if category is not None:
            return self.find_active(profile_id, category)
        rows = self.db.query(
            f"SELECT {_COLUMNS} FROM memories WHERE profile_id = ? AND {_ACTIVE} ORDER BY created_at DESC, rowid DESC",
            [profile_id],
        )
        return [_row_to_memory(row) for row in rows]

    def list_history(self, profile_id: str, category: MemoryCategory) -> list[Memory]:
        """Every memory of a category including superseded ones, oldest first."""
        rows = self.db.query(
            f"SELECT {_COLUMNS} FROM memories WHERE profile_id = ? AND category = ? ORDER BY created_at, rowid",
            [profile_id, category.value],
        )
        return [_row_to_memory(row) for row in rows]

    def recent(self, profile_id: str, limit: int) -> list[Memory]:
        rows = self.db.query(
            f"SELECT {_COLUMNS} FROM memories WHERE profile_id = ? AND {_ACTIVE} "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?",
            [profile_id, limit],
        )
        return [_row_to_memory(row) for row in rows]

    def high_importance(self, profile_id: str, min_importance: int, limit: int) -> list[Memory]:
        rows = self.db.query(
            f"SELECT {_COLUMNS} FROM memories WHERE profile_id = ? AND {_ACTIVE} AND importance >= ? "
            "ORDER BY importance DESC, created_at DESC, rowid DESC LIMIT ?",
            [profile_id, min_importance, limit],
        )
        return [_row_to_memory(row) for row in rows]

    def with_embeddings(self, profile_id: str) -> list[Memory]:
        rows = self.db.query(
            f"SELECT {_COLUMNS} FROM memories WHERE profile_id = ? AND {_ACTIVE} AND embedding IS NOT NULL "
            "ORDER BY created_at DESC, rowid DESC",
            [profile_id],
        )
        return [_row_to_memory(row) for row in rows]

    def delete(self, memory_id: str) -> bool:
        return self.db.write("DELETE FROM memories WHERE id = ?", [memory_id]) > 0


def _insert(cursor: sqlite3.Cursor, memory: Memory) -> None:
    cursor.execute(
        f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [
            memory.id,
            memory.profile_id,
            memory.source_session_id,
            memory.category.value,
            memory.content,
            memory.embedding,
            memory.importance,
            memory.occurrence_count,
            to_ms(memory.created_at),
            to_ms(memory.superseded_at),
            memory.superseded_by_id,
        ],
    )


def _row_to_memory(row: sqlite3.Row) -> Memory:
    embedding = row["embedding"]
    superseded_at: datetime | None = from_ms(row["superseded_at"])
    return Memory(
        id=row["id"],
        profile_id=row["profile_id"],
        source_session_id=row["source_session_id"],
        category=MemoryCategory(row["category"]),
        content=row["content"],
        embedding=bytes(embedding) if embedding is not None else None,
        importance=row["importance"],
        occurrence_count=row["occurrence_count"],
        created_at=from_ms(row["created_at"]),
        superseded_at=superseded_at,
        superseded_by_id=row["superseded_by_id"],
    )


__all__ = ["MemoryStore"]
