"""Keeps local chat state in step with mirror change notifications.

Realtime delivery is best effort: if a subscription cannot be set up, the
views keep working from explicit fetches.
"""

import logging

from ..api.models import ConversationThread, Message
from ..data.mirror import ChangeEvent, Subscription
from .api import ChatAPI
from .session import ChatSession

logger = logging.getLogger(__name__)

UNSUBSCRIBED_PREFIX = "test-"


class ThreadBridge:
    """Mirror subscription for the thread currently open in a ChatSession."""

    def __init__(self, mirror, session: ChatSession) -> None:
        self._mirror = mirror
        self._session = session
        self._subscription: Subscription | None = None
        self.thread_id: str | None = None
        self.deleted = False

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.subscribed

    async def open(self, thread_id: str) -> None:
        await self.close()
        self.thread_id = thread_id
        self.deleted = False
        await self.refresh()

        if thread_id.startswith(UNSUBSCRIBED_PREFIX):
            logger.info("Not subscribing to test thread: %s", thread_id)
            return
        try:
            self._subscription = await self._mirror.subscribe(self.handle, thread_id=thread_id)
        except Exception:
            logger.exception("Error setting up real-time subscription for thread %s", thread_id)
            self._subscription = None

    async def close(self) -> None:
        if self._subscription is not None:
            subscription, self._subscription = self._subscription, None
            try:
                await subscription.unsubscribe()
            except Exception:
                logger.exception("Error unsubscribing %s", subscription.name)

    async def refresh(self) -> None:
        if self.thread_id is None:
            return
        thread_id = self.thread_id
        try:
            messages = await self._session.fetch_thread(thread_id)
        except Exception:
            logger.exception("Failed to reload thread %s", thread_id)
            return
        # A send or a thread switch may have started while the fetch was pending
        if self._session.reassembler.is_busy or thread_id != self.thread_id:
            logger.debug("Discarding stale reload of thread %s", thread_id)
            return
        self._session.reassembler.reset(thread_id=thread_id, messages=messages)

    async def handle(self, event: ChangeEvent) -> None:
        if event.row_id is not None and event.row_id != self.thread_id:
            return
        if self._session.reassembler.is_busy:
            # Local send in flight; its completion upsert arrives afterwards
            logger.debug("Ignoring %s for %s while a reply is streaming", event.event_type, self.thread_id)
            return

        if event.event_type == "DELETE":
            logger.info("Thread %s was deleted", self.thread_id)
            self.deleted = True
            self._session.reassembler.reset(thread_id=self.thread_id)
            return

        new_messages = event.new.get("messages")
        known = len(self._session.messages)
        if isinstance(new_messages, list) and len(new_messages) > known:
            try:
                messages = [Message.model_validate(m) for m in new_messages]
            except ValueError:
                logger.warning("Unreadable messages in change payload for %s, reloading", self.thread_id)
            else:
                logger.info("Messages updated: %d → %d", known, len(messages))
                self._session.reassembler.replace_messages(messages)
                return
        else:
            logger.debug("Thread %s updated but message count unchanged, reloading", self.thread_id)

        await self.refresh()


class ThreadListBridge:
    """Mirror subscription feeding the list of all threads."""

    def __init__(self, mirror, api: ChatAPI, user_id: str) -> None:
        self._mirror = mirror
        self._api = api
        self.user_id = user_id
        self.threads: list[ConversationThread] = []
        self._subscription: Subscription | None = None

    async def start(self) -> None:
        await self.stop()
        await self.refresh()
        try:
            self._subscription = await self._mirror.subscribe(self.handle)
        except Exception:
            logger.exception("Error setting up real-time subscription for thread list")
            self._subscription = None

    async def stop(self) -> None:
        if self._subscription is not None:
            subscription, self._subscription = self._subscription, None
            try:
                await subscription.unsubscribe()
            except Exception:
                logger.exception("Error unsubscribing %s", subscription.name)

    async def refresh(self) -> None:
        try:
            self.threads = await self._api.list_threads(self.user_id)
        except Exception:
            logger.exception("Error fetching threads for %s", self.user_id)

    def _index(self, thread_id: str) -> int | None:
        for i, thread in enumerate(self.threads):
            if thread.id == thread_id:
                return i
        return None

    async def handle(self, event: ChangeEvent) -> None:
        row_id = event.row_id
        if event.event_type not in ("INSERT", "UPDATE", "DELETE") or row_id is None:
            await self.refresh()
            return

        owner = (event.new or event.old).get("user_id")
        if owner is not None and owner != self.user_id:
            return

        if event.event_type == "DELETE":
            index = self._index(row_id)
            if index is not None:
                del self.threads[index]
            return

        try:
            thread = ConversationThread.model_validate(event.new)
        except ValueError:
            logger.warning("Unreadable %s payload for %s, reloading list", event.event_type, row_id)
            await self.refresh()
            return

        index = self._index(row_id)
        if event.event_type == "INSERT" and index is None:
            self.threads.insert(0, thread)
        elif index is not None:
            self.threads[index] = thread
        else:
            await self.refresh()
