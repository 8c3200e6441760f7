import logging
from collections.abc import AsyncIterator

import openai
from openai import AsyncOpenAI

from ..config import DEFAULT_SYSTEM_PROMPT, OPENAI_MODEL
from ..errors import ErrorKind, UpstreamError

logger = logging.getLogger(__name__)

SERVICE_NAME = "OpenAI API"


def _to_upstream_error(exc: Exception) -> UpstreamError:
    if isinstance(exc, openai.APITimeoutError):
        return UpstreamError(ErrorKind.TIMEOUT, f"No response from {SERVICE_NAME}: timed out", service=SERVICE_NAME)
    if isinstance(exc, openai.APIConnectionError):
        return UpstreamError(ErrorKind.NETWORK, f"No response from {SERVICE_NAME}", service=SERVICE_NAME)
    if isinstance(exc, openai.APIStatusError):
        return UpstreamError(
            ErrorKind.HTTP_STATUS, exc.message or f"Error from {SERVICE_NAME}",
            status_code=exc.status_code, service=SERVICE_NAME,
        )
    return UpstreamError(ErrorKind.UNKNOWN, str(exc) or "Failed to process request", service=SERVICE_NAME)


class OpenAIProvider:
    """Chat completions through the OpenAI SDK, one user turn per call."""

    def __init__(self, client: AsyncOpenAI | None = None, model: str = OPENAI_MODEL) -> None:
        self._client = client
        self._model = model

    @property
    def client(self) -> AsyncOpenAI:
        # Built lazily so a missing OPENAI_API_KEY only matters when this route is used
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    def _messages(self, message: str, system_prompt: str | None) -> list[dict]:
        return [
            {"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT},
            {"role": "user", "content": message},
        ]

    async def complete(self, message: str, system_prompt: str | None = None) -> str:
        try:
            completion = await self.client.chat.completions.create(
                model=self._model, messages=self._messages(message, system_prompt)
            )
        except openai.OpenAIError as e:
            logger.error("OpenAI completion failed: %s", e)
            raise _to_upstream_error(e) from e
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    async def stream(self, message: str, system_prompt: str | None = None) -> AsyncIterator[str]:
        """Yield non-empty text deltas as they arrive."""
        try:
            stream = await self.client.chat.completions.create(
                model=self._model, messages=self._messages(message, system_prompt), stream=True
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except openai.OpenAIError as e:
            logger.error("OpenAI stream failed: %s", e)
            raise _to_upstream_error(e) from e
