import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum

from ..api.models import Message
from ..relay.frames import StreamFrame

logger = logging.getLogger(__name__)


class ReassemblerState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_CHUNK = "awaiting_first_chunk"
    ACCUMULATING = "accumulating"
    COMPLETE = "complete"
    ERROR = "error"


IN_FLIGHT = (ReassemblerState.AWAITING_FIRST_CHUNK, ReassemblerState.ACCUMULATING)


class Reassembler:
    """Builds the visible message list from a stream of frames.

    The user message is appended as soon as a send starts. The assistant
    message appears on the first chunk and its content is always the whole
    accumulated text, never just the latest delta.
    """

    def __init__(
        self,
        messages: list[Message] | None = None,
        thread_id: str | None = None,
        on_thread_id: Callable[[str], None] | None = None,
    ) -> None:
        self.messages: list[Message] = list(messages or [])
        self.thread_id = thread_id
        self.state = ReassemblerState.IDLE
        self.error: str | None = None
        self._on_thread_id = on_thread_id
        self._accumulator = ""
        self._assistant: Message | None = None

    @property
    def is_busy(self) -> bool:
        return self.state in IN_FLIGHT

    @property
    def assistant_message(self) -> Message | None:
        return self._assistant

    def begin(self, content: str) -> Message:
        if self.is_busy:
            raise RuntimeError("A message is already being received")
        user_message = Message(role="user", content=content, timestamp=datetime.now(UTC))
        self.messages.append(user_message)
        self._accumulator = ""
        self._assistant = None
        self.error = None
        self.state = ReassemblerState.AWAITING_FIRST_CHUNK
        return user_message

    def latch_thread_id(self, thread_id: str | None) -> None:
        if not thread_id or self.thread_id is not None:
            return
        self.thread_id = thread_id
        logger.info("Received thread ID: %s", thread_id)
        if self._on_thread_id:
            self._on_thread_id(thread_id)

    def apply(self, frame: StreamFrame) -> None:
        if not self.is_busy:
            logger.debug("Ignoring frame in state %s: %s", self.state.value, frame)
            return

        if frame.thread_id:
            self.latch_thread_id(frame.thread_id)
        if frame.chunk:
            self._append(frame.chunk)
        if frame.error is not None:
            self.fail(frame.error)
        elif frame.done:
            self.complete()

    def _append(self, text: str) -> None:
        self._accumulator += text
        if self._assistant is None:
            self._assistant = Message(
                role="assistant", content=self._accumulator, timestamp=datetime.now(UTC)
            )
            self.messages.append(self._assistant)
            self.state = ReassemblerState.ACCUMULATING
        else:
            self._assistant.content = self._accumulator

    def complete(self) -> None:
        if not self.is_busy:
            return
        self.state = ReassemblerState.COMPLETE

    def complete_with_reply(self, reply: str, thread_id: str | None = None) -> None:
        """Finish a send from a single non-streamed reply."""
        self.latch_thread_id(thread_id)
        self._append(reply)
        self.complete()

    def fail(self, error: str) -> None:
        if self._assistant is not None and not self._assistant.content:
            self.messages = [m for m in self.messages if m is not self._assistant]
            self._assistant = None
        self.error = error
        self.state = ReassemblerState.ERROR
        logger.error("Message failed: %s", error)

    def dismiss_error(self) -> None:
        self.error = None

    def replace_messages(self, messages: list[Message]) -> None:
        if self.is_busy:
            raise RuntimeError("Cannot replace messages while a reply is streaming")
        self.messages = list(messages)
        self._assistant = None

    def reset(self, thread_id: str | None = None, messages: list[Message] | None = None) -> None:
        self.messages = list(messages or [])
        self.thread_id = thread_id
        self.state = ReassemblerState.IDLE
        self.error = None
        self._accumulator = ""
        self._assistant = None
