import asyncio
import logging
import uuid

from supabase import AsyncClient, acreate_client

from ..config import MIRROR_TABLE
from .mirror import ChangeEvent, ChangeHandler, Subscription

logger = logging.getLogger(__name__)

COLUMNS = "id, title, user_id, messages, created_at, updated_at"


class SupabaseMirror:
    """Thread mirror backed by a Supabase table with realtime change feeds."""

    def __init__(self, url: str, key: str) -> None:
        self._url = url
        self._key = key
        self._client: AsyncClient | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            raise RuntimeError("SupabaseMirror not initialized — call initialize() first")
        return self._client

    async def initialize(self) -> None:
        self._client = await acreate_client(self._url, self._key)
        logger.info("Supabase client initialized with URL: %s", self._url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.remove_all_channels()
        for task in list(self._tasks):
            task.cancel()

    # --- Rows ---

    async def get_thread(self, thread_id: str) -> dict | None:
        result = (
            await self.client.table(MIRROR_TABLE)
            .select(COLUMNS)
            .eq("id", thread_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def list_threads(self, limit: int = 50) -> list[dict]:
        result = (
            await self.client.table(MIRROR_TABLE)
            .select(COLUMNS)
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return list(result.data or [])

    async def upsert_thread(self, row: dict) -> dict:
        result = await self.client.table(MIRROR_TABLE).upsert(row, on_conflict="id").execute()
        return result.data[0] if result.data else row

    async def delete_thread(self, thread_id: str) -> None:
        await self.client.table(MIRROR_TABLE).delete().eq("id", thread_id).execute()

    # --- Change feed ---

    async def subscribe(self, handler: ChangeHandler, thread_id: str | None = None) -> Subscription:
        if thread_id:
            name = f"thread-{thread_id}-{uuid.uuid4().hex[:7]}"
        else:
            name = "all-threads"
        channel = self.client.channel(name)

        def on_change(payload: dict) -> None:
            event = ChangeEvent.from_payload(payload)
            logger.info("Change received on %s: %s %s", name, event.event_type, event.row_id)
            task = asyncio.get_running_loop().create_task(self._deliver(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        def on_status(status, err=None) -> None:
            if err is not None:
                logger.warning("Realtime subscription %s failed: %s (%s)", name, status, err)
            else:
                logger.info("Realtime subscription status for %s: %s", name, status)

        options = {"event": "*", "schema": "public", "table": MIRROR_TABLE, "callback": on_change}
        if thread_id:
            options["filter"] = f"id=eq.{thread_id}"
        channel.on_postgres_changes(**options)
        await channel.subscribe(on_status)

        async def _remove() -> None:
            await self.client.remove_channel(channel)

        return Subscription(name, _remove)

    async def _deliver(self, handler: ChangeHandler, event: ChangeEvent) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception("Change handler failed for %s %s", event.event_type, event.row_id)
