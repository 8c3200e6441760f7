import logging
from datetime import UTC, datetime

from ..data.mirror import build_row, derive_title, next_updated_at

logger = logging.getLogger(__name__)


class CompletionReconciler:
    """Copies finished conversations into the mirror.

    The inference backend stays the system of record; every method here is
    best effort. Failures are logged and swallowed, nothing is retried, and
    concurrent writers to the same row are last-writer-wins.
    """

    def __init__(self, upstream, mirror) -> None:
        self._upstream = upstream
        self._mirror = mirror

    async def reconcile(self, thread_id: str, owner: str | None = None) -> bool:
        """Read the authoritative thread upstream and upsert it into the mirror."""
        try:
            thread = await self._upstream.get_thread(thread_id)
            if not isinstance(thread, dict):
                raise ValueError(f"Expected a thread object, got {type(thread).__name__}")
            thread.setdefault("id", thread_id)
            existing = await self._mirror.get_thread(thread_id)
            updated_at = next_updated_at((existing or {}).get("updated_at"))
            row = build_row(thread, owner, updated_at=updated_at)
            await self._mirror.upsert_thread(row)
        except Exception:
            logger.exception("Failed to mirror thread %s", thread_id)
            return False
        logger.info("Mirrored thread %s (%d messages)", thread_id, len(row["messages"]))
        return True

    async def record_exchange(
        self, thread_id: str, owner: str | None, user_message: str, reply: str
    ) -> bool:
        """Append one user/assistant turn to the mirror row for a provider without thread storage."""
        try:
            existing = await self._mirror.get_thread(thread_id)
            messages = list(existing["messages"]) if existing else []
            now = datetime.now(UTC).isoformat()
            messages.append({"role": "user", "content": user_message, "timestamp": now})
            messages.append({"role": "assistant", "content": reply, "timestamp": now})
            row = {
                "id": thread_id,
                "title": (existing or {}).get("title") or derive_title(messages),
                "user_id": owner if owner is not None else (existing or {}).get("user_id"),
                "messages": messages,
                "updated_at": next_updated_at((existing or {}).get("updated_at")),
            }
            await self._mirror.upsert_thread(row)
        except Exception:
            logger.exception("Failed to mirror exchange for thread %s", thread_id)
            return False
        logger.info("Mirrored exchange for thread %s", thread_id)
        return True

    async def remove(self, thread_id: str) -> bool:
        try:
            await self._mirror.delete_thread(thread_id)
        except Exception:
            logger.exception("Failed to delete mirrored thread %s", thread_id)
            return False
        return True
