"""Persistence for conversation sessions, messages and learner profiles."""

from __future__ import annotations

import sqlite3

import orjson

from context_coach.db.sqlite import SQLiteDatabase
from context_coach.models.entities import ConversationSession, LearnerProfile, Message, MessageRole
from context_coach.utils import ids
from context_coach.utils.time import from_ms, now_ms, to_ms

_SESSION_COLUMNS = (
    "id, profile_id, title, created_at, last_message_at, is_deleted, "
    "last_memory_extraction_at, last_processed_message_id"
)
_MESSAGE_COLUMNS = "id, session_id, role, content, created_at, tokens_used, model_used"
_PROFILE_COLUMNS = (
    "profile_id, current_role, experience_years, primary_tech_stack, current_project, learning_goals, "
    "learning_style, preferred_pace, identified_strengths, identified_struggles, created_at, updated_at"
)
_PROFILE_LIST_FIELDS = ("primary_tech_stack", "learning_goals", "identified_strengths", "identified_struggles")


class ConversationStore:
    """Repository for chat state. Messages are append-only and ordered by insertion."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    # Sessions ---------------------------------------------------------

    def create_session(self, profile_id: str, title: str | None = None) -> ConversationSession:
        now = now_ms()
        session = ConversationSession(
            id=ids.new_id(ids.SESSION),
            profile_id=profile_id,
            title=title,
            created_at=from_ms(now),
            last_message_at=from_ms(now),
        )
        self.db.write(
            f"INSERT INTO conversation_sessions ({_SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?, 0, NULL, NULL)",
            [session.id, profile_id, title, now, now],
        )
        return session

    def get_session(self, session_id: str) -> ConversationSession | None:
        row = self.db.query_one(f"SELECT {_SESSION_COLUMNS} FROM conversation_sessions WHERE id = ?", [session_id])
        return _row_to_session(row) if row else None

    def list_sessions(self, profile_id: str, limit: int = 50) -> list[ConversationSession]:
        rows = self.db.query(
            f"SELECT {_SESSION_COLUMNS} FROM conversation_sessions WHERE profile_id = ? AND is_deleted = 0 "
            "ORDER BY last_message_at DESC, rowid DESC LIMIT ?",
            [profile_id, limit],
        )
        return [_row_to_session(row) for row in rows]

    def soft_delete_session(self, session_id: str) -> bool:
        return self.db.write("UPDATE conversation_sessions SET is_deleted = 1 WHERE id = ?", [session_id]) > 0

    def touch_session(self, session_id: str) -> None:
        self.db.write("UPDATE conversation_sessions SET last_message_at = ? WHERE id = ?", [now_ms(), session_id])

    def set_title(self, session_id: str, title: str) -> None:
        self.db.write("UPDATE conversation_sessions SET title = ? WHERE id = ?", [title, session_id])

    def sessions_needing_extraction(
        self,
        profile_id: str,
        exclude_session_id: str | None = None,
    ) -> list[ConversationSession]:
        """Live sessions with messages newer than their last memory extraction."""
        sql = (
            f"SELECT {_SESSION_COLUMNS} FROM conversation_sessions "
            "WHERE profile_id = ? AND is_deleted = 0 "
            "AND (last_memory_extraction_at IS NULL OR last_memory_extraction_at < last_message_at)"
        )
        params: list[object] = [profile_id]
        if exclude_session_id is not None:
            sql += " AND id != ?"
            params.append(exclude_session_id)
        rows = self.db.query(sql + " ORDER BY last_message_at, rowid", params)
        return [_row_to_session(row) for row in rows]

    def update_extraction_checkpoint(self, session_id: str, last_processed_message_id: str | None) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE conversation_sessions
                SET last_memory_extraction_at = MAX(?, last_message_at),
                    last_processed_message_id = COALESCE(?, last_processed_message_id)
                WHERE id = ?
                """,
                [now_ms(), last_processed_message_id, session_id],
            )

    # Messages ---------------------------------------------------------

    def add_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        tokens_used: int | None = None,
        model_used: str | None = None,
    ) -> Message:
        message = Message(
            id=ids.new_id(ids.MESSAGE),
            session_id=session_id,
            role=role,
            content=content,
            tokens_used=tokens_used,
            model_used=model_used,
        )
        self.db.write(
            f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                message.id,
                session_id,
                role.value,
                content,
                to_ms(message.created_at),
                tokens_used,
                model_used,
            ],
        )
        return message

    def list_messages(self, session_id: str) -> list[Message]:
        rows = self.db.query(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? ORDER BY created_at, rowid",
            [session_id],
        )
        return [_row_to_message(row) for row in rows]

    def recent_messages(self, session_id: str, limit: int, before_message_id: str | None = None) -> list[Message]:
        """Last ``limit`` messages in chronological order, optionally stopping before a message."""
        sql = f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ?"
        params: list[object] = [session_id]
        if before_message_id is not None:
            sql += " AND rowid < (SELECT rowid FROM messages WHERE id = ?)"
            params.append(before_message_id)
        rows = self.db.query(sql + " ORDER BY created_at DESC, rowid DESC LIMIT ?", [*params, limit])
        return [_row_to_message(row) for row in reversed(rows)]

    def messages_after(self, session_id: str, message_id: str | None) -> list[Message]:
        """Messages inserted after ``message_id``; all messages when it is ``None``."""
        if message_id is None:
            return self.list_messages(session_id)
        rows = self.db.query(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? "
            "AND rowid > (SELECT rowid FROM messages WHERE id = ?) ORDER BY rowid",
            [session_id, message_id],
        )
        return [_row_to_message(row) for row in rows]

    # Learner profiles -------------------------------------------------

    def get_profile(self, profile_id: str) -> LearnerProfile | None:
        row = self.db.query_one(f"SELECT {_PROFILE_COLUMNS} FROM learner_profiles WHERE profile_id = ?", [profile_id])
        return _row_to_profile(row) if row else None

    def upsert_profile(self, profile: LearnerProfile) -> LearnerProfile:
        now = now_ms()
        self.db.write(
            f"""
            INSERT INTO learner_profiles ({_PROFILE_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (profile_id) DO UPDATE SET
              current_role = excluded.current_role,
              experience_years = excluded.experience_years,
              primary_tech_stack = excluded.primary_tech_stack,
              current_project = excluded.current_project,
              learning_goals = excluded.learning_goals,
              learning_style = excluded.learning_style,
              preferred_pace = excluded.preferred_pace,
              identified_strengths = excluded.identified_strengths,
              identified_struggles = excluded.identified_struggles,
              updated_at = excluded.updated_at
            """,
            [
                profile.profile_id,
                profile.current_role,
                profile.experience_years,
                _dump_list(profile.primary_tech_stack),
                profile.current_project,
                _dump_list(profile.learning_goals),
                profile.learning_style,
                profile.preferred_pace,
                _dump_list(profile.identified_strengths),
                _dump_list(profile.identified_struggles),
                to_ms(profile.created_at),
                now,
            ],
        )
        profile.updated_at = from_ms(now)
        return profile


def _dump_list(values: list[str]) -> str:
    return orjson.dumps(list(values)).decode("utf-8")


def _row_to_session(row: sqlite3.Row) -> ConversationSession:
    return ConversationSession(
        id=row["id"],
        profile_id=row["profile_id"],
        title=row["title"],
        created_at=from_ms(row["created_at"]),
        last_message_at=from_ms(row["last_message_at"]),
        is_deleted=bool(row["is_deleted"]),
        last_memory_extraction_at=from_ms(row["last_memory_extraction_at"]),
        last_processed_message_id=row["last_processed_message_id"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        session_id=row["session_id"],
        role=MessageRole(row["role"]),
        content=row["content"],
        created_at=from_ms(row["created_at"]),
        tokens_used=row["tokens_used"],
        model_used=row["model_used"],
    )


def _row_to_profile(row: sqlite3.Row) -> LearnerProfile:
    lists = {name: orjson.loads(row[name] or "[]") for name in _PROFILE_LIST_FIELDS}
    return LearnerProfile(
        profile_id=row["profile_id"],
        current_role=row["current_role"],
        experience_years=row["experience_years"],
        current_project=row["current_project"],
        learning_style=row["learning_style"],
        preferred_pace=row["preferred_pace"],
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
        **lists,
    )


__all__ = ["ConversationStore"]
