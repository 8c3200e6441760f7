import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from .frames import SSEFrameParser, StreamFrame

logger = logging.getLogger(__name__)


class StreamRelay:
    """Forwards one upstream SSE byte stream downstream, unchanged and in order.

    Every chunk is also decoded through an SSEFrameParser so the relay learns
    the thread id and whether the stream finished cleanly. When it did, the
    ``on_complete`` callback runs once with the thread id; ``finalize`` is
    meant to be scheduled after the response has been sent.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        thread_id: str | None = None,
        on_complete: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        self._chunks = chunks
        self._parser = SSEFrameParser()
        self._on_complete = on_complete
        self.thread_id = thread_id
        self.done = False
        self.error: str | None = None
        self.upstream_finished = False
        self._finalized = False

    async def stream(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._chunks:
                self._observe(self._parser.feed(chunk))
                yield chunk
        except Exception:
            logger.exception("Upstream stream failed, aborting relay for thread %s", self.thread_id)
            raise

        self._observe(self._parser.flush())
        self.upstream_finished = True
        if not self.done and self.error is None:
            logger.warning("Upstream closed without a terminal frame (thread %s)", self.thread_id)

    def _observe(self, frames: list[StreamFrame]) -> None:
        for frame in frames:
            if frame.thread_id and self.thread_id is None:
                self.thread_id = frame.thread_id
            if frame.error is not None and self.error is None:
                logger.warning("Upstream reported stream error: %s", frame.error)
                self.error = frame.error
            if frame.done:
                self.done = True

    @property
    def should_reconcile(self) -> bool:
        return self.upstream_finished and self.done and self.thread_id is not None

    async def finalize(self) -> None:
        if self._finalized or not self.should_reconcile or self._on_complete is None:
            return
        self._finalized = True
        await self._on_complete(self.thread_id)
