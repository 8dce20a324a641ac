"""Message store protocol and its SQLite-backed implementation."""

from __future__ import annotations

import json
import math
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol, TypedDict

import aiosqlite
import structlog

from threadline.models.config import StoreConfig
from threadline.models.message import Message

# ── Exceptions ─────────────────────────────────────────────────────────────────


class ThreadlineStoreError(Exception):
    """Base class for store errors."""


class MessageNotFoundError(ThreadlineStoreError):
    """Raised when a message does not exist for the given owner."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message not found: {message_id!r}")
        self.message_id = message_id


# ── Protocol ───────────────────────────────────────────────────────────────────


class MessageFilter(TypedDict, total=False):
    """Filter accepted by :meth:`MessageStore.query` and :meth:`MessageStore.delete_many`."""

    conversation_id: str
    message_id: str
    user: str
    created_after: int
    """Only match messages created strictly after this unix-ms timestamp."""


class MessageStore(Protocol):
    """
    The storage operations the threadline core relies on.

    Results of :meth:`query` are sorted by creation time, oldest first.
    """

    async def query(self, filter: MessageFilter, *, limit: int | None = None) -> list[Message]: ...

    async def upsert(self, user: str | None, message_id: str, patch: dict[str, Any]) -> Message: ...

    async def delete_many(self, filter: MessageFilter) -> int: ...

    async def find_by_shared_keys(
        self,
        user: str | None,
        keys: Iterable[str],
        *,
        exclude_conversation_id: str | None = None,
        limit: int | None = None,
    ) -> list[Message]: ...


# ── SQLite implementation ──────────────────────────────────────────────────────

_JSON_COLUMNS = ("content", "responses", "feedback")
_COLUMNS = (
    "id",
    "user_id",
    "conversation_id",
    "parent_id",
    "role",
    "sender",
    "text",
    "content",
    "token_count",
    "is_user_authored",
    "summary",
    "summary_token_count",
    "created_at",
    "updated_at",
    "model",
    "endpoint",
    "responses",
    "shared_user_message_id",
    "feedback",
    "finish_reason",
    "error",
)
_FILTER_COLUMNS = {
    "conversation_id": "conversation_id = ?",
    "message_id": "id = ?",
    "user": "user_id = ?",
    "created_after": "created_at > ?",
}


class SQLiteMessageStore:
    """
    SQLite-backed :class:`MessageStore`.

    Messages are keyed by ``(user, id)``; writes are upserts so a message
    saved twice is updated in place rather than duplicated.

    Usage::

        store = SQLiteMessageStore(StoreConfig(db_path="/tmp/chat.db"))
        await store.initialize()
        try:
            await store.save_message(message)
            history = await store.get_messages(conversation_id, user="u1")
        finally:
            await store.close()
    """

    def __init__(self, config: StoreConfig) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._conn: aiosqlite.Connection | None = None
        self._logger = structlog.get_logger("threadline.store")

    async def initialize(self) -> None:
        """
        Open the database connection and apply the schema.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self._db_path, timeout=self._config.connection_timeout)
        try:
            conn.row_factory = aiosqlite.Row
            if self._config.wal_mode:
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            schema = (Path(__file__).parent / "schema.sql").read_text()
            await conn.executescript(schema)
            await conn.commit()
        except Exception:
            await conn.close()
            raise
        self._conn = conn
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection. Safe to call more than once."""
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise ThreadlineStoreError("Store is not initialized. Call initialize() first.")
        return self._conn

    # ── Protocol methods ───────────────────────────────────────────────────────

    async def query(self, filter: MessageFilter, *, limit: int | None = None) -> list[Message]:
        """Return messages matching *filter*, oldest first."""
        conn = self._conn_or_raise()
        where, params = self._where(filter)
        sql = f"SELECT * FROM messages {where} ORDER BY created_at ASC, rowid ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        async with conn.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_message(r) for r in rows]

    async def upsert(self, user: str | None, message_id: str, patch: dict[str, Any]) -> Message:
        """
        Merge *patch* into the message keyed by ``(user, message_id)``, creating it if absent.

        A non-numeric or NaN ``token_count`` is reset to 0 rather than rejected.

        Returns:
            The stored message after the update.
        """
        conn = self._conn_or_raise()
        patch = dict(patch)
        patch.pop("siblings", None)
        token_count = patch.get("token_count")
        if token_count is not None and not _is_valid_count(token_count):
            self._logger.warning(
                "invalid_token_count_reset", message_id=message_id, token_count=repr(token_count)
            )
            patch["token_count"] = 0

        existing = await self._get(user, message_id)
        if existing is not None:
            data = existing.model_dump(exclude={"siblings"})
            data.update(patch)
            data["updated_at"] = int(time.time() * 1000)
        else:
            data = {**patch, "id": message_id}
        data["id"] = message_id
        data["user"] = user
        message = Message.model_validate(data)

        row = self._message_to_row(message)
        placeholders = ", ".join("?" for _ in _COLUMNS)
        await conn.execute(
            f"INSERT OR REPLACE INTO messages ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            [row[c] for c in _COLUMNS],
        )
        await conn.commit()
        return message

    async def delete_many(self, filter: MessageFilter) -> int:
        """
        Delete messages matching *filter* and return how many were removed.

        Raises:
            ValueError: If *filter* is empty.
        """
        if not filter:
            raise ValueError("delete_many requires a non-empty filter")
        conn = self._conn_or_raise()
        where, params = self._where(filter)
        cursor = await conn.execute(f"DELETE FROM messages {where}", params)
        await conn.commit()
        return cursor.rowcount

    async def find_by_shared_keys(
        self,
        user: str | None,
        keys: Iterable[str],
        *,
        exclude_conversation_id: str | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        """Return messages carrying any of the legacy ``shared_user_message_id`` *keys*."""
        key_list = sorted(set(keys))
        if not key_list:
            return []
        conn = self._conn_or_raise()
        conditions = [
            "user_id = ?",
            f"shared_user_message_id IN ({', '.join('?' for _ in key_list)})",
        ]
        params: list[Any] = [user or "", *key_list]
        if exclude_conversation_id is not None:
            conditions.append("conversation_id != ?")
            params.append(exclude_conversation_id)
        sql = f"SELECT * FROM messages WHERE {' AND '.join(conditions)} ORDER BY created_at ASC, rowid ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        async with conn.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_message(r) for r in rows]

    # ── Convenience methods ────────────────────────────────────────────────────

    async def save_message(self, message: Message) -> Message:
        """Upsert a whole message by ``(message.user, message.id)``."""
        patch = message.model_dump(exclude={"id", "user", "siblings"})
        return await self.upsert(message.user, message.id, patch)

    async def bulk_save(self, messages: Iterable[Message]) -> int:
        """Save several messages and return how many were written."""
        count = 0
        for message in messages:
            await self.save_message(message)
            count += 1
        return count

    async def get_message(self, user: str | None, message_id: str) -> Message | None:
        return await self._get(user, message_id)

    async def get_messages(self, conversation_id: str, user: str | None = None) -> list[Message]:
        """Return every message of a conversation, oldest first."""
        filter: MessageFilter = {"conversation_id": conversation_id}
        if user is not None:
            filter["user"] = user
        return await self.query(filter)

    async def update_message(
        self, user: str | None, message_id: str, patch: dict[str, Any]
    ) -> Message:
        """
        Update an existing message.

        Raises:
            MessageNotFoundError: If no message with this id exists for *user*.
        """
        if await self._get(user, message_id) is None:
            raise MessageNotFoundError(message_id)
        return await self.upsert(user, message_id, patch)

    async def delete_messages_since(
        self, user: str | None, conversation_id: str, message_id: str
    ) -> int:
        """Delete every message of a conversation created after *message_id*."""
        message = await self._get(user, message_id)
        if message is None:
            return 0
        return await self.delete_many(
            {
                "conversation_id": conversation_id,
                "user": user or "",
                "created_after": message.created_at,
            }
        )

    async def delete_conversation(self, user: str | None, conversation_id: str) -> int:
        """Delete every message of a conversation."""
        return await self.delete_many({"conversation_id": conversation_id, "user": user or ""})

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _get(self, user: str | None, message_id: str) -> Message | None:
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM messages WHERE user_id = ? AND id = ?", (user or "", message_id)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_message(row) if row is not None else None

    @staticmethod
    def _where(filter: MessageFilter) -> tuple[str, list[Any]]:
        conditions: list[str] = []
        params: list[Any] = []
        for key, value in filter.items():
            clause = _FILTER_COLUMNS.get(key)
            if clause is None:
                raise ValueError(f"Unsupported message filter key: {key!r}")
            conditions.append(clause)
            params.append(value)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return where, params

    @staticmethod
    def _message_to_row(message: Message) -> dict[str, Any]:
        data = message.model_dump(mode="json", exclude={"siblings"})
        row = {c: data.get(c) for c in _COLUMNS}
        row["user_id"] = message.user or ""
        row["is_user_authored"] = int(message.is_user_authored)
        row["error"] = int(message.error)
        for column in _JSON_COLUMNS:
            value = data.get(column)
            row[column] = json.dumps(value) if value is not None else None
        return row

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> Message:
        data = {key: row[key] for key in row.keys()}
        data["user"] = data.pop("user_id") or None
        for column in _JSON_COLUMNS:
            if data[column] is not None:
                data[column] = json.loads(data[column])
        data["is_user_authored"] = bool(data["is_user_authored"])
        data["error"] = bool(data["error"])
        return Message.model_validate(data)


def _is_valid_count(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 0
    if isinstance(value, float):
        return not math.isnan(value) and value >= 0 and value.is_integer()
    return False
