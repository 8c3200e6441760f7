import logging
from collections.abc import AsyncIterator

import httpx

from ..config import SOULGRAPH_API_PREFIX, SOULGRAPH_API_URL, SOULGRAPH_TOKEN, UPSTREAM_TIMEOUT_SECS
from ..errors import UpstreamError

logger = logging.getLogger(__name__)

SERVICE_NAME = "SoulGraph API"


class SoulGraphClient:
    """Async HTTP client for the SoulGraph inference backend.

    Every failure leaves this class as an UpstreamError.
    """

    def __init__(
        self,
        base_url: str = SOULGRAPH_API_URL,
        prefix: str = SOULGRAPH_API_PREFIX,
        token: str | None = SOULGRAPH_TOKEN,
        timeout: float = UPSTREAM_TIMEOUT_SECS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._prefix = prefix.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._http.aclose()

    def _path(self, path: str) -> str:
        return f"{self._prefix}{path}"

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = self._path(path)
        logger.info("%s %s", method, url)
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("No response from %s for %s %s: %s", SERVICE_NAME, method, url, e)
            raise UpstreamError.from_exception(e, SERVICE_NAME) from e
        if response.is_error:
            logger.error("%s returned %s for %s %s", SERVICE_NAME, response.status_code, method, url)
            raise UpstreamError.from_response(response, SERVICE_NAME)
        return response

    async def _json(self, method: str, path: str, **kwargs) -> dict:
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError.from_exception(
                ValueError(f"Malformed JSON from {SERVICE_NAME}: {e}"), SERVICE_NAME
            ) from e

    # --- Inference ---

    async def inference(self, payload: dict) -> dict:
        return await self._json("POST", "/inference", json=payload)

    async def open_inference_stream(self, payload: dict) -> httpx.Response:
        """Start a streaming inference call; the caller must drain or close the response."""
        url = self._path("/inference")
        request = self._http.build_request(
            "POST", url, json=payload, headers={"Accept": "text/event-stream"}
        )
        logger.info("POST %s (stream)", url)
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("No response from %s for streaming inference: %s", SERVICE_NAME, e)
            raise UpstreamError.from_exception(e, SERVICE_NAME) from e
        if response.is_error:
            await response.aread()
            await response.aclose()
            logger.error("%s returned %s for streaming inference", SERVICE_NAME, response.status_code)
            raise UpstreamError.from_response(response, SERVICE_NAME)
        return response

    @staticmethod
    async def iter_stream(response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        finally:
            await response.aclose()

    # --- Threads ---

    async def get_thread(self, thread_id: str) -> dict:
        return await self._json("GET", f"/threads/{thread_id}")

    async def list_threads(self, user_id: str, limit: int = 50, offset: int = 0) -> dict:
        params = {"user_id": user_id, "limit": limit, "offset": offset}
        return await self._json("GET", "/threads", params=params)

    async def delete_thread(self, thread_id: str, user_id: str | None = None) -> dict:
        params = {"user_id": user_id} if user_id else {}
        response = await self._request("DELETE", f"/threads/{thread_id}", params=params)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def health(self) -> bool:
        await self._request("GET", "/health")
        return True
