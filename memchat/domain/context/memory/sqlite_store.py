"""Durable SQLite backend for conversations and turns."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, List, Optional

import structlog

from memchat.domain.models.conversation import Conversation, Persona, Turn, TurnOrigin, utcnow
from .conversation_store import ConversationStore
from .turn_store import TurnStore

logger = structlog.get_logger(__name__)


class SQLiteStore(TurnStore, ConversationStore):
    """Small SQLite wrapper implementing both the turn and conversation stores.

    Blocking sqlite calls run in a worker thread so the event loop keeps
    serving other exchanges while a statement executes.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self.db_path = db_path
        self.connection = sqlite3.connect(db_path, check_same_thread=False)
        self.connection.row_factory = sqlite3.Row
        self.connection.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.Lock()
        self._create_schema()

    def _create_schema(self) -> None:
        with self._lock:
            cur = self.connection.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    persona TEXT NOT NULL,
                    turn_count INTEGER NOT NULL DEFAULT 0,
                    last_activity TEXT NOT NULL,
                    archived_once INTEGER NOT NULL DEFAULT 0,
                    archived_turn_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_conversations_owner
                ON conversations(owner_id)
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS turns (
                    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    conversation_id TEXT NOT NULL,
                    origin TEXT NOT NULL,
                    body TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_turns_conversation
                ON turns(conversation_id, created_at, sequence)
                """
            )
            self.connection.commit()

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    def close(self) -> None:
        with self._lock:
            self.connection.close()

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------
    @staticmethod
    def _to_conversation(row: Optional[sqlite3.Row]) -> Optional[Conversation]:
        if row is None:
            return None
        return Conversation(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            persona=Persona(row["persona"]),
            turn_count=row["turn_count"],
            last_activity=datetime.fromisoformat(row["last_activity"]),
            archived_once=bool(row["archived_once"]),
            archived_turn_count=row["archived_turn_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _to_turn(row: sqlite3.Row) -> Turn:
        return Turn(
            id=row["id"],
            conversation_id=row["conversation_id"],
            origin=TurnOrigin(row["origin"]),
            body=row["body"],
            created_at=datetime.fromisoformat(row["created_at"]),
            sequence=row["sequence"],
        )

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------
    def _append_turn(self, conversation_id: str, origin: TurnOrigin, body: str) -> Turn:
        turn_id = uuid.uuid4().hex
        created_at = utcnow()
        with self._lock:
            cur = self.connection.execute(
                """
                INSERT INTO turns (id, conversation_id, origin, body, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (turn_id, conversation_id, origin.value, body, created_at.isoformat(timespec="microseconds")),
            )
            self.connection.commit()
            sequence = cur.lastrowid
        return Turn(
            id=turn_id,
            conversation_id=conversation_id,
            origin=origin,
            body=body,
            created_at=created_at,
            sequence=sequence,
        )

    def _list_turns(self, conversation_id: str) -> List[Turn]:
        with self._lock:
            cur = self.connection.execute(
                """
                SELECT * FROM turns WHERE conversation_id = ?
                ORDER BY created_at ASC, sequence ASC
                """,
                (conversation_id,),
            )
            rows = cur.fetchall()
        return [self._to_turn(row) for row in rows]

    def _recent_turns(self, conversation_id: str, limit: int) -> List[Turn]:
        with self._lock:
            cur = self.connection.execute(
                """
                SELECT * FROM turns WHERE conversation_id = ?
                ORDER BY created_at DESC, sequence DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            )
            rows = cur.fetchall()
        # Newest-first query, flipped back to chronological order
        return [self._to_turn(row) for row in reversed(rows)]

    def _count_turns(self, conversation_id: str) -> int:
        with self._lock:
            cur = self.connection.execute(
                "SELECT COUNT(*) FROM turns WHERE conversation_id = ?", (conversation_id,)
            )
            return int(cur.fetchone()[0])

    def _delete_turns(self, conversation_id: str) -> int:
        with self._lock:
            cur = self.connection.execute(
                "DELETE FROM turns WHERE conversation_id = ?", (conversation_id,)
            )
            self.connection.commit()
            return cur.rowcount

    async def append_turn(self, conversation_id: str, origin: TurnOrigin, body: str) -> Turn:
        return await self._run(self._append_turn, conversation_id, origin, body)

    async def list_turns(self, conversation_id: str) -> List[Turn]:
        return await self._run(self._list_turns, conversation_id)

    async def recent_turns(self, conversation_id: str, limit: int) -> List[Turn]:
        if limit <= 0:
            return []
        return await self._run(self._recent_turns, conversation_id, limit)

    async def count_turns(self, conversation_id: str) -> int:
        return await self._run(self._count_turns, conversation_id)

    async def delete_turns(self, conversation_id: str) -> int:
        return await self._run(self._delete_turns, conversation_id)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------
    def _create(self, owner_id: str, title: str, persona: Persona) -> Conversation:
        conversation = Conversation(id=uuid.uuid4().hex, owner_id=owner_id, title=title, persona=persona)
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO conversations
                    (id, owner_id, title, persona, turn_count, last_activity,
                     archived_once, archived_turn_count, created_at)
                VALUES (?, ?, ?, ?, 0, ?, 0, 0, ?)
                """,
                (
                    conversation.id,
                    owner_id,
                    title,
                    persona.value,
                    conversation.last_activity.isoformat(timespec="microseconds"),
                    conversation.created_at.isoformat(timespec="microseconds"),
                ),
            )
            self.connection.commit()
        return conversation

    def _get(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            cur = self.connection.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,))
            row = cur.fetchone()
        return self._to_conversation(row)

    def _find_owned(self, conversation_id: str, owner_id: str) -> Optional[Conversation]:
        with self._lock:
            cur = self.connection.execute(
                "SELECT * FROM conversations WHERE id = ? AND owner_id = ?",
                (conversation_id, owner_id),
            )
            row = cur.fetchone()
        return self._to_conversation(row)

    def _list_for_owner(self, owner_id: str) -> List[Conversation]:
        with self._lock:
            cur = self.connection.execute(
                "SELECT * FROM conversations WHERE owner_id = ? ORDER BY last_activity DESC",
                (owner_id,),
            )
            rows = cur.fetchall()
        return [self._to_conversation(row) for row in rows]

    def _record_exchange(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            self.connection.execute(
                """
                UPDATE conversations
                SET turn_count = turn_count + 2, last_activity = ?
                WHERE id = ?
                """,
                (utcnow().isoformat(timespec="microseconds"), conversation_id),
            )
            self.connection.commit()
            row = self.connection.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return self._to_conversation(row)

    def _mark_archived(self, conversation_id: str, archived_turn_count: int) -> Optional[Conversation]:
        with self._lock:
            self.connection.execute(
                """
                UPDATE conversations
                SET archived_once = 1,
                    archived_turn_count = MAX(archived_turn_count, ?)
                WHERE id = ?
                """,
                (archived_turn_count, conversation_id),
            )
            self.connection.commit()
            row = self.connection.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return self._to_conversation(row)

    def _delete(self, conversation_id: str) -> bool:
        with self._lock:
            cur = self.connection.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            self.connection.commit()
            return cur.rowcount > 0

    async def create(self, owner_id: str, title: str, persona: Persona) -> Conversation:
        return await self._run(self._create, owner_id, title, persona)

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        return await self._run(self._get, conversation_id)

    async def find_owned(self, conversation_id: str, owner_id: str) -> Optional[Conversation]:
        return await self._run(self._find_owned, conversation_id, owner_id)

    async def list_for_owner(self, owner_id: str) -> List[Conversation]:
        return await self._run(self._list_for_owner, owner_id)

    async def record_exchange(self, conversation_id: str) -> Optional[Conversation]:
        return await self._run(self._record_exchange, conversation_id)

    async def mark_archived(self, conversation_id: str, archived_turn_count: int) -> Optional[Conversation]:
        return await self._run(self._mark_archived, conversation_id, archived_turn_count)

    async def delete(self, conversation_id: str) -> bool:
        logger.debug("Deleting conversation row", conversation_id=conversation_id)
        return await self._run(self._delete, conversation_id)
