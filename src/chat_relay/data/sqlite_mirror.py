import json
import logging
import uuid

import aiosqlite

from ..config import MIRROR_TABLE
from .mirror import ChangeEvent, ChangeHandler, Subscription, now_iso

logger = logging.getLogger(__name__)

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {MIRROR_TABLE} (
    id TEXT PRIMARY KEY,
    title TEXT,
    user_id TEXT,
    messages TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

COLUMNS = "id, title, user_id, messages, created_at, updated_at"


def _row_to_dict(row: aiosqlite.Row) -> dict:
    data = dict(row)
    data["messages"] = json.loads(data["messages"] or "[]")
    return data


class SQLiteMirror:
    """Thread mirror in a local SQLite file.

    Change events are published in-process to subscribers after each
    committed write, standing in for a hosted realtime feed.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._db: aiosqlite.Connection | None = None
        self._subscribers: dict[str, tuple[ChangeHandler, str | None]] = {}

    @property
    def db(self) -> aiosqlite.Connection:
        """Return the database connection, raising if not initialized."""
        if self._db is None:
            raise RuntimeError("SQLiteMirror not initialized — call initialize() first")
        return self._db

    async def initialize(self) -> None:
        self._db = await aiosqlite.connect(self._path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        self._subscribers.clear()
        if self._db:
            await self._db.close()

    # --- Rows ---

    async def get_thread(self, thread_id: str) -> dict | None:
        cursor = await self.db.execute(
            f"SELECT {COLUMNS} FROM {MIRROR_TABLE} WHERE id = ?", (thread_id,)
        )
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_threads(self, limit: int = 50) -> list[dict]:
        cursor = await self.db.execute(
            f"SELECT {COLUMNS} FROM {MIRROR_TABLE} ORDER BY updated_at DESC LIMIT ?", (limit,)
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(r) for r in rows]

    async def upsert_thread(self, row: dict) -> dict:
        old = await self.get_thread(row["id"])
        created_at = old["created_at"] if old else row.get("created_at") or now_iso()
        updated_at = row.get("updated_at") or now_iso()
        await self.db.execute(
            f"""INSERT INTO {MIRROR_TABLE} ({COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 title = excluded.title,
                 user_id = excluded.user_id,
                 messages = excluded.messages,
                 updated_at = excluded.updated_at""",
            (
                row["id"],
                row.get("title"),
                row.get("user_id"),
                json.dumps(row.get("messages") or [], default=str),
                created_at,
                updated_at,
            ),
        )
        await self.db.commit()
        new = await self.get_thread(row["id"])
        await self._publish(ChangeEvent("UPDATE" if old else "INSERT", new=new, old=old or {}))
        return new

    async def delete_thread(self, thread_id: str) -> None:
        old = await self.get_thread(thread_id)
        await self.db.execute(f"DELETE FROM {MIRROR_TABLE} WHERE id = ?", (thread_id,))
        await self.db.commit()
        if old:
            await self._publish(ChangeEvent("DELETE", old=old))

    # --- Change feed ---

    async def subscribe(self, handler: ChangeHandler, thread_id: str | None = None) -> Subscription:
        key = str(uuid.uuid4())
        self._subscribers[key] = (handler, thread_id)
        name = f"thread-{thread_id}" if thread_id else "all-threads"
        logger.info("Subscribed %s to %s changes", name, MIRROR_TABLE)

        async def _remove() -> None:
            self._subscribers.pop(key, None)

        return Subscription(name, _remove)

    async def _publish(self, event: ChangeEvent) -> None:
        for handler, thread_id in list(self._subscribers.values()):
            if thread_id is not None and event.row_id != thread_id:
                continue
            try:
                await handler(event)
            except Exception:
                logger.exception("Change handler failed for %s %s", event.event_type, event.row_id)
