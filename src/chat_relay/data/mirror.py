"""Shared shapes for the thread mirror backends.

A mirror row is a plain dict with ``id``, ``title``, ``user_id`` (the owner),
``messages`` (list of ``{role, content, timestamp}`` dicts), ``created_at`` and
``updated_at``.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from ..config import TITLE_MAX_CHARS

logger = logging.getLogger(__name__)

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def next_updated_at(previous: str | None) -> str:
    """Current time, nudged past ``previous`` so updated_at never goes backwards."""
    now = datetime.now(UTC)
    if previous:
        try:
            prev = datetime.fromisoformat(previous)
        except ValueError:
            prev = None
        if prev is not None:
            if prev.tzinfo is None:
                prev = prev.replace(tzinfo=UTC)
            if now <= prev:
                now = prev + timedelta(microseconds=1)
    return now.isoformat()


def derive_title(messages: list[dict], fallback: str = "New conversation") -> str:
    for msg in messages:
        if msg.get("role") == "user" and str(msg.get("content", "")).strip():
            return str(msg["content"]).strip()[:TITLE_MAX_CHARS]
    return fallback


def build_row(thread: dict, owner: str | None, updated_at: str | None = None) -> dict:
    """Shape an upstream thread object into a mirror row."""
    messages = thread.get("messages") or []
    if not isinstance(messages, list):
        raise ValueError(f"Thread {thread.get('id')} has a non-list messages field")
    return {
        "id": thread["id"],
        "title": thread.get("title") or derive_title(messages),
        "user_id": owner,
        "messages": messages,
        "updated_at": updated_at or now_iso(),
    }


@dataclass
class ChangeEvent:
    """Row-level change notification from the mirror table."""

    event_type: str
    new: dict = field(default_factory=dict)
    old: dict = field(default_factory=dict)

    @property
    def row_id(self) -> str | None:
        return self.new.get("id") or self.old.get("id")

    @classmethod
    def from_payload(cls, payload: dict) -> "ChangeEvent":
        """Accepts ``{eventType, new, old}`` or the realtime ``{data: {type, record, old_record}}`` form."""
        if "data" in payload and isinstance(payload["data"], dict):
            data = payload["data"]
            event_type = data.get("type") or data.get("eventType") or ""
            new = data.get("record") or {}
            old = data.get("old_record") or {}
        else:
            event_type = payload.get("eventType") or payload.get("type") or ""
            new = payload.get("new") or {}
            old = payload.get("old") or {}
        event_type = str(getattr(event_type, "value", event_type)).upper()
        return cls(event_type=event_type, new=dict(new), old=dict(old))


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class Subscription:
    """Handle for one change subscription; call ``unsubscribe`` to stop delivery."""

    def __init__(self, name: str, unsubscribe: Callable[[], Awaitable[None]]) -> None:
        self.name = name
        self.subscribed = True
        self._unsubscribe = unsubscribe

    async def unsubscribe(self) -> None:
        if not self.subscribed:
            return
        self.subscribed = False
        await self._unsubscribe()
        logger.info("Unsubscribed %s", self.name)
