import httpx
import pytest

from chat_relay.errors import ErrorKind, UpstreamError
from chat_relay.relay.frames import SSEFrameParser, StreamFrame
from conftest import SCENARIO_FRAMES


def frames_of(body: bytes) -> list[StreamFrame]:
    parser = SSEFrameParser()
    return parser.feed(body) + parser.flush()


@pytest.mark.asyncio
async def test_streaming_chat_relays_bytes_and_mirrors_thread(http, soulgraph, mirror):
    response = await http.post("/api/soulgraph", json={"message": "Hello", "stream": True})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.content == b"".join(SCENARIO_FRAMES)

    forwarded = soulgraph.calls("POST", "/v0/inference")[0]
    assert b'"stream":true' in forwarded.content.replace(b" ", b"")

    row = await mirror.get_thread("t1")
    assert row["title"] == "Hello"
    assert len(row["messages"]) == 3
    assert len(soulgraph.calls("GET", "/v0/threads/t1")) == 1


@pytest.mark.asyncio
async def test_streaming_chat_without_done_skips_mirror(http, soulgraph, mirror):
    soulgraph.stream_chunks = SCENARIO_FRAMES[:3]
    response = await http.post("/api/soulgraph", json={"message": "Hello", "stream": True})
    assert response.content == b"".join(SCENARIO_FRAMES[:3])
    assert await mirror.get_thread("t1") is None
    assert soulgraph.calls("GET", "/v0/threads/t1") == []


@pytest.mark.asyncio
async def test_streaming_chat_upstream_unreachable(http, soulgraph):
    soulgraph.fail_with = httpx.ConnectError("refused")
    response = await http.post("/api/soulgraph", json={"message": "Hello", "stream": True})
    assert response.status_code == 503
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_batch_chat_mirrors_before_responding(http, mirror):
    response = await http.post("/api/soulgraph", json={"message": "Hello", "user_id": "u1"})
    assert response.status_code == 200
    assert response.json() == {"response": "Hi there", "thread_id": "t1"}
    row = await mirror.get_thread("t1")
    assert row["user_id"] == "u1"


@pytest.mark.asyncio
async def test_batch_chat_mirror_failure_is_not_surfaced(http, soulgraph, mirror):
    soulgraph.reply = {"response": "Hi", "thread_id": "missing"}
    response = await http.post("/api/soulgraph", json={"message": "Hello"})
    assert response.status_code == 200
    assert await mirror.get_thread("missing") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", [["Hi there"], "Hi there", 42])
async def test_batch_chat_non_object_reply_is_json_error(http, soulgraph, mirror, reply):
    soulgraph.reply = reply
    response = await http.post("/api/soulgraph", json={"message": "Hello", "thread_id": "t1"})
    assert response.status_code == 500
    assert response.json() == {"error": "Unexpected response from SoulGraph API"}
    assert await mirror.get_thread("t1") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"message": "   "}, {"stream": True}])
async def test_missing_message_is_400(http, body):
    response = await http.post("/api/soulgraph", json=body)
    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_health(http, soulgraph):
    assert (await http.get("/api/soulgraph/health")).json() == {"status": "ok"}
    soulgraph.healthy = False
    response = await http.get("/api/soulgraph/health")
    assert response.status_code == 500
    assert response.json() == {"error": "Health check failed"}


@pytest.mark.asyncio
async def test_threads_require_user_id(http):
    response = await http.get("/api/threads")
    assert response.status_code == 400
    assert response.json() == {"error": "user_id is required"}


@pytest.mark.asyncio
async def test_threads_passthrough(http, soulgraph):
    response = await http.get("/api/threads", params={"user_id": "u1"})
    assert response.status_code == 200
    assert [t["id"] for t in response.json()["threads"]] == ["t1"]
    sent = soulgraph.calls("GET", "/v0/threads")[0]
    assert sent.url.params["limit"] == "50"
    assert sent.url.params["offset"] == "0"


@pytest.mark.asyncio
async def test_get_thread_passes_upstream_status(http):
    assert (await http.get("/api/threads/t1")).json()["id"] == "t1"
    response = await http.get("/api/threads/unknown")
    assert response.status_code == 404
    assert response.json() == {"error": "Thread not found"}


@pytest.mark.asyncio
async def test_get_thread_timeout_is_503(http, soulgraph):
    soulgraph.fail_with = httpx.ReadTimeout("slow")
    response = await http.get("/api/threads/t1")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_delete_thread_removes_mirror_row(http, soulgraph, mirror, app):
    await app.state.reconciler.reconcile("t1")
    response = await http.delete("/api/threads/t1", params={"user_id": "u1"})
    assert response.status_code == 200
    assert "t1" not in soulgraph.threads
    assert soulgraph.calls("DELETE", "/v0/threads/t1")[0].url.params["user_id"] == "u1"
    assert await mirror.get_thread("t1") is None


@pytest.mark.asyncio
async def test_openai_stream_emits_frames_and_records_exchange(http, mirror):
    response = await http.post(
        "/api/openai", json={"message": "Hello", "thread_id": "openai-1", "stream": True, "user_id": "u1"}
    )
    assert response.status_code == 200
    frames = frames_of(response.content)
    assert frames == [
        StreamFrame(thread_id="openai-1"),
        StreamFrame(chunk="Hi"),
        StreamFrame(chunk=" there"),
        StreamFrame(done=True),
    ]
    row = await mirror.get_thread("openai-1")
    assert [m["content"] for m in row["messages"]] == ["Hello", "Hi there"]


@pytest.mark.asyncio
async def test_openai_stream_error_frame(http, mirror, openai_provider):
    openai_provider.error = UpstreamError(ErrorKind.NETWORK, "No response from OpenAI API")
    response = await http.post("/api/openai", json={"message": "Hello", "stream": True})
    frames = frames_of(response.content)
    assert frames[0].thread_id.startswith("openai-")
    assert frames[-1] == StreamFrame(error="No response from OpenAI API")
    assert await mirror.list_threads() == []


@pytest.mark.asyncio
async def test_openai_batch_synthesizes_thread_id(http, mirror, openai_provider):
    response = await http.post("/api/openai", json={"message": "Hello", "system_prompt": "Be brief."})
    data = response.json()
    assert data["response"] == "Hi there"
    assert data["thread_id"].startswith("openai-")
    assert openai_provider.calls == [("Hello", "Be brief.")]
    assert await mirror.get_thread(data["thread_id"]) is not None


@pytest.mark.asyncio
async def test_openai_batch_upstream_status(http, openai_provider):
    openai_provider.error = UpstreamError(ErrorKind.HTTP_STATUS, "Rate limited", status_code=429)
    response = await http.post("/api/openai", json={"message": "Hello"})
    assert response.status_code == 429
    assert response.json() == {"error": "Rate limited"}
