import logging
from collections.abc import Callable
from contextlib import aclosing

from ..api.models import ChatRequest, Message
from ..config import DEFAULT_SYSTEM_PROMPT, TEST_USER_ID
from ..errors import UpstreamError
from .api import ChatAPI
from .reassembler import Reassembler, ReassemblerState

logger = logging.getLogger(__name__)


class ChatSession:
    """One open conversation: sends messages and owns the visible message list."""

    def __init__(
        self,
        api: ChatAPI,
        user_id: str = TEST_USER_ID,
        thread_id: str | None = None,
        mirror=None,
        streaming: bool = True,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        on_thread_created: Callable[[str], None] | None = None,
    ) -> None:
        self._api = api
        self._mirror = mirror
        self.user_id = user_id
        self.streaming = streaming
        self.system_prompt = system_prompt
        self._on_thread_created = on_thread_created
        self.reassembler = Reassembler(thread_id=thread_id, on_thread_id=self._thread_created)

    @property
    def thread_id(self) -> str | None:
        return self.reassembler.thread_id

    @property
    def messages(self) -> list[Message]:
        return self.reassembler.messages

    @property
    def error(self) -> str | None:
        return self.reassembler.error

    def dismiss_error(self) -> None:
        self.reassembler.dismiss_error()

    def _thread_created(self, thread_id: str) -> None:
        if self._on_thread_created:
            self._on_thread_created(thread_id)

    def _build_request(self, content: str) -> ChatRequest:
        return ChatRequest(
            message=content,
            user_id=self.user_id,
            thread_id=self.thread_id,
            new_thread=self.thread_id is None,
            system_prompt=self.system_prompt,
            model=self._api.model,
        )

    async def send(self, content: str) -> ReassemblerState:
        if not content.strip():
            raise ValueError("Cannot send an empty message")

        req = self._build_request(content)
        self.reassembler.begin(content)

        if not self.streaming:
            await self._send_once(req)
            return self.reassembler.state

        received_chunk = False
        try:
            async with aclosing(self._api.stream_message(req)) as frames:
                async for frame in frames:
                    if frame.chunk:
                        received_chunk = True
                    self.reassembler.apply(frame)
                    if not self.reassembler.is_busy:
                        break
        except UpstreamError as e:
            if received_chunk:
                self.reassembler.fail(f"Error: {e.detail}")
                return self.reassembler.state
            logger.warning("Streaming failed, falling back to standard request: %s", e)
            await self._send_once(req)
            return self.reassembler.state

        # Stream ended without a terminal frame; keep whatever arrived
        self.reassembler.complete()
        return self.reassembler.state

    async def _send_once(self, req: ChatRequest) -> None:
        try:
            response = await self._api.send_message(req)
        except UpstreamError as e:
            self.reassembler.fail(f"Failed to send message: {e.detail}")
            return
        self.reassembler.complete_with_reply(response.response, response.thread_id)

    async def load_thread(self, thread_id: str) -> list[Message]:
        """Load a thread, reading the mirror first and the API when the mirror has nothing."""
        messages = await self.fetch_thread(thread_id)
        self.reassembler.reset(thread_id=thread_id, messages=messages)
        return self.messages

    async def fetch_thread(self, thread_id: str) -> list[Message]:
        messages = None
        if self._mirror is not None:
            try:
                row = await self._mirror.get_thread(thread_id)
                if row and isinstance(row.get("messages"), list):
                    messages = [Message.model_validate(m) for m in row["messages"]]
            except Exception:
                logger.exception("Error fetching thread %s from mirror", thread_id)

        if messages is None:
            thread = await self._api.get_thread(thread_id)
            messages = thread.messages
        return messages
