import codecs
import json
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
FRAME_TERMINATOR = "\n\n"


@dataclass
class StreamFrame:
    """One decoded SSE event from an inference stream."""

    thread_id: str | None = None
    chunk: str | None = None
    done: bool = False
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.done or self.error is not None

    def to_dict(self) -> dict:
        data: dict = {}
        if self.thread_id is not None:
            data["thread_id"] = self.thread_id
        if self.chunk is not None:
            data["chunk"] = self.chunk
        if self.done:
            data["done"] = True
        if self.error is not None:
            data["error"] = self.error
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "StreamFrame":
        thread_id = data.get("thread_id")
        chunk = data.get("chunk")
        error = data.get("error")
        return cls(
            thread_id=str(thread_id) if thread_id else None,
            chunk=chunk if isinstance(chunk, str) and chunk else None,
            done=data.get("done") is True,
            error=str(error) if error else None,
        )


def encode_frame(frame: StreamFrame) -> bytes:
    return f"{DATA_PREFIX}{frame.to_json()}{FRAME_TERMINATOR}".encode()


class SSEFrameParser:
    """Incrementally turns SSE bytes into StreamFrames.

    Chunks may split a frame anywhere (including inside a multi-byte UTF-8
    sequence or a CRLF pair) or carry several frames at once. Fragments that
    are not ``data: <json object>`` are dropped and counted, never raised.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending: list[str] = []
        self.dropped = 0

    def feed(self, data: bytes | str) -> list[StreamFrame]:
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        if not data:
            return []
        # A "\r" ending the previous read may pair with a "\n" starting this one
        if self._pending and self._pending[-1].endswith("\r"):
            last = self._pending.pop()[:-1]
            if last:
                self._pending.append(last)
            data = "\r" + data
        data = data.replace("\r\n", "\n")

        tail = self._pending[-1][-1:] if self._pending else ""
        if FRAME_TERMINATOR not in tail + data:
            self._pending.append(data)
            return []

        fragments = "".join(self._pending + [data]).split(FRAME_TERMINATOR)
        rest = fragments.pop()
        self._pending = [rest] if rest else []
        return self._parse_all(fragments)

    def flush(self) -> list[StreamFrame]:
        """Signal end of stream; returns any frames completed by the decoder tail."""
        frames = self.feed(self._decoder.decode(b"", final=True))
        rest = "".join(self._pending)
        if rest.strip():
            logger.debug("Dropping incomplete trailing SSE fragment: %r", rest[:200])
            self.dropped += 1
        self._pending = []
        return frames

    def _parse_all(self, fragments: list[str]) -> list[StreamFrame]:
        frames = []
        for fragment in fragments:
            frame = self._parse(fragment)
            if frame is not None:
                frames.append(frame)
        return frames

    def _parse(self, fragment: str) -> StreamFrame | None:
        if not fragment.strip():
            return None

        first_line = fragment.lstrip("\n").split("\n", 1)[0]
        if not first_line.startswith(DATA_PREFIX):
            logger.debug("Dropping SSE fragment without data prefix: %r", fragment[:200])
            self.dropped += 1
            return None

        try:
            payload = json.loads(first_line[len(DATA_PREFIX) :].strip())
        except ValueError:
            logger.debug("Dropping SSE fragment with malformed JSON: %r", fragment[:200])
            self.dropped += 1
            return None

        if not isinstance(payload, dict):
            logger.debug("Dropping SSE fragment with non-object payload: %r", fragment[:200])
            self.dropped += 1
            return None

        return StreamFrame.from_dict(payload)
