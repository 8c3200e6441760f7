import logging
from collections.abc import AsyncIterator

import httpx

from ..api.models import ChatRequest, ConversationThread, InferenceResponse
from ..errors import UpstreamError
from ..relay.frames import SSEFrameParser, StreamFrame

logger = logging.getLogger(__name__)

SERVICE_NAME = "chat relay"

MODEL_PATHS = {
    "soulgraph": "/api/soulgraph",
    "openai": "/api/openai",
}
THREADS_PATH = "/api/threads"


class ChatAPI:
    """Client for the relay's HTTP surface, as a browser would use it."""

    def __init__(self, http: httpx.AsyncClient, model: str = "soulgraph") -> None:
        if model not in MODEL_PATHS:
            raise ValueError(f"Unknown model: {model}. Available: {', '.join(MODEL_PATHS)}")
        self._http = http
        self.model = model

    @property
    def chat_path(self) -> str:
        return MODEL_PATHS[self.model]

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamError.from_exception(e, SERVICE_NAME) from e
        if response.is_error:
            raise UpstreamError.from_response(response, SERVICE_NAME)
        return response

    async def send_message(self, req: ChatRequest) -> InferenceResponse:
        body = req.model_copy(update={"stream": False}).model_dump(exclude_none=True)
        response = await self._request("POST", self.chat_path, json=body)
        return InferenceResponse.model_validate(response.json())

    async def stream_message(self, req: ChatRequest) -> AsyncIterator[StreamFrame]:
        """Yield frames from a streaming chat call.

        Transport failures and non-2xx replies surface as UpstreamError while
        iterating.
        """
        body = req.model_copy(update={"stream": True}).model_dump(exclude_none=True)
        parser = SSEFrameParser()
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        try:
            async with self._http.stream("POST", self.chat_path, json=body, headers=headers) as response:
                if response.is_error:
                    await response.aread()
                    raise UpstreamError.from_response(response, SERVICE_NAME)
                async for data in response.aiter_bytes():
                    for frame in parser.feed(data):
                        yield frame
                for frame in parser.flush():
                    yield frame
        except httpx.HTTPError as e:
            raise UpstreamError.from_exception(e, SERVICE_NAME) from e
        if parser.dropped:
            logger.debug("Dropped %d unparseable SSE fragments", parser.dropped)

    async def health_check(self) -> bool:
        try:
            await self._request("GET", f"{MODEL_PATHS['soulgraph']}/health")
        except UpstreamError as e:
            logger.error("Health check failed: %s", e)
            return False
        return True

    async def list_threads(self, user_id: str, limit: int = 50, offset: int = 0) -> list[ConversationThread]:
        params = {"user_id": user_id, "limit": limit, "offset": offset}
        response = await self._request("GET", THREADS_PATH, params=params)
        threads = response.json().get("threads") or []
        return [ConversationThread.model_validate(t) for t in threads]

    async def get_thread(self, thread_id: str) -> ConversationThread:
        response = await self._request("GET", f"{THREADS_PATH}/{thread_id}")
        return ConversationThread.model_validate(response.json())

    async def delete_thread(self, thread_id: str, user_id: str | None = None) -> bool:
        params = {"user_id": user_id} if user_id else {}
        response = await self._request("DELETE", f"{THREADS_PATH}/{thread_id}", params=params)
        return response.status_code == 200
