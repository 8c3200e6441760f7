import json

import httpx
import pytest
import pytest_asyncio
from sse_starlette import sse as sse_module

from chat_relay.data.sqlite_mirror import SQLiteMirror
from chat_relay.errors import UpstreamError
from chat_relay.main import create_app
from chat_relay.relay.reconciler import CompletionReconciler
from chat_relay.upstream.soulgraph import SoulGraphClient

SCENARIO_FRAMES = [
    b'data: {"thread_id":"t1"}\n\n',
    b'data: {"chunk":"Hi"}\n\n',
    b'data: {"chunk":" there"}\n\n',
    b'data: {"done":true}\n\n',
]

SCENARIO_THREAD = {
    "id": "t1",
    "messages": [
        {"role": "system", "content": "You are a helpful assistant.", "timestamp": "2025-03-01T10:00:00+00:00"},
        {"role": "user", "content": "Hello", "timestamp": "2025-03-01T10:00:01+00:00"},
        {"role": "assistant", "content": "Hi there", "timestamp": "2025-03-01T10:00:02+00:00"},
    ],
    "created_at": "2025-03-01T10:00:00+00:00",
    "updated_at": "2025-03-01T10:00:02+00:00",
}


class FakeSoulGraph:
    """In-memory stand-in for the SoulGraph API behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.threads: dict[str, dict] = {"t1": json.loads(json.dumps(SCENARIO_THREAD))}
        self.stream_chunks: list[bytes] = list(SCENARIO_FRAMES)
        self.stream_error: Exception | None = None
        self.reply = {"response": "Hi there", "thread_id": "t1"}
        self.fail_with: Exception | None = None
        self.healthy = True
        self.requests: list[httpx.Request] = []

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    async def _iter_stream(self):
        for chunk in self.stream_chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with

        path = request.url.path
        if path == "/v0/inference":
            body = json.loads(request.content)
            if body.get("stream"):
                return httpx.Response(
                    200, headers={"content-type": "text/event-stream"}, content=self._iter_stream()
                )
            return httpx.Response(200, json=self.reply)

        if path == "/v0/health":
            return httpx.Response(200 if self.healthy else 500, json={"status": "ok"})

        if path == "/v0/threads":
            return httpx.Response(200, json={"threads": list(self.threads.values())})

        if path.startswith("/v0/threads/"):
            thread_id = path.rsplit("/", 1)[1]
            if thread_id not in self.threads:
                return httpx.Response(404, json={"error": "Thread not found"})
            if request.method == "DELETE":
                del self.threads[thread_id]
                return httpx.Response(200, json={"status": "deleted"})
            return httpx.Response(200, json=self.threads[thread_id])

        return httpx.Response(404, json={"error": "Not found"})


class FakeOpenAIProvider:
    def __init__(self, deltas=("Hi", " there"), error: UpstreamError | None = None) -> None:
        self.deltas = list(deltas)
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    async def complete(self, message: str, system_prompt: str | None = None) -> str:
        self.calls.append((message, system_prompt))
        if self.error is not None:
            raise self.error
        return "".join(self.deltas)

    async def stream(self, message: str, system_prompt: str | None = None):
        self.calls.append((message, system_prompt))
        for delta in self.deltas:
            yield delta
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        pass


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    # Older sse-starlette releases keep one exit event bound to the first event loop
    app_status = getattr(sse_module, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None


@pytest_asyncio.fixture
async def mirror(tmp_path):
    store = SQLiteMirror(str(tmp_path / "mirror.db"))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def soulgraph():
    return FakeSoulGraph()


@pytest_asyncio.fixture
async def upstream(soulgraph):
    client = SoulGraphClient(
        base_url="http://soulgraph.test", transport=httpx.MockTransport(soulgraph.handler)
    )
    yield client
    await client.close()


@pytest.fixture
def openai_provider():
    return FakeOpenAIProvider()


@pytest.fixture
def app(upstream, mirror, openai_provider):
    app = create_app(use_lifespan=False)
    app.state.upstream = upstream
    app.state.mirror = mirror
    app.state.openai_provider = openai_provider
    app.state.reconciler = CompletionReconciler(upstream, mirror)
    return app


@pytest_asyncio.fixture
async def http(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://relay.test"
    ) as client:
        yield client
