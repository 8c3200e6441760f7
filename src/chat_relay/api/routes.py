import logging
import time
from functools import partial

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sse_starlette.sse import EventSourceResponse
from starlette.background import BackgroundTask

from ..errors import UpstreamError
from ..relay.relay import StreamRelay
from .models import ChatRequest, InferenceResponse
from .sse import sse_chunk, sse_done, sse_error, sse_thread_id

logger = logging.getLogger(__name__)
router = APIRouter()

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@router.post("/api/soulgraph")
async def soulgraph_chat(req: ChatRequest, request: Request):
    upstream = request.app.state.upstream
    reconciler = request.app.state.reconciler

    if not req.message.strip():
        return _error("message is required", 400)

    payload = req.model_dump(exclude_none=True)

    if req.stream:
        response = await upstream.open_inference_stream(payload)
        relay = StreamRelay(
            upstream.iter_stream(response),
            thread_id=req.thread_id,
            on_complete=partial(reconciler.reconcile, owner=req.user_id),
        )
        return StreamingResponse(
            relay.stream(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
            background=BackgroundTask(relay.finalize),
        )

    data = await upstream.inference(payload)
    if not isinstance(data, dict):
        logger.error("Unexpected inference reply from SoulGraph API: %r", data)
        return _error("Unexpected response from SoulGraph API", 500)
    thread_id = data.get("thread_id") or req.thread_id
    if thread_id:
        await reconciler.reconcile(thread_id, owner=req.user_id)
    return data


@router.get("/api/soulgraph/health")
async def soulgraph_health(request: Request):
    upstream = request.app.state.upstream
    try:
        await upstream.health()
    except UpstreamError as e:
        logger.error("Error checking SoulGraph API health: %s", e)
        return _error("Health check failed", 500)
    return {"status": "ok"}


@router.post("/api/openai")
async def openai_chat(req: ChatRequest, request: Request):
    provider = request.app.state.openai_provider
    reconciler = request.app.state.reconciler

    if not req.message.strip():
        return _error("message is required", 400)

    thread_id = req.thread_id or f"openai-{int(time.time() * 1000)}"

    if not req.stream:
        reply = await provider.complete(req.message, req.system_prompt)
        await reconciler.record_exchange(thread_id, req.user_id, req.message, reply)
        return InferenceResponse(response=reply, thread_id=thread_id)

    reply_parts: list[str] = []
    finished = False

    async def event_generator():
        nonlocal finished
        yield sse_thread_id(thread_id)
        try:
            async for delta in provider.stream(req.message, req.system_prompt):
                reply_parts.append(delta)
                yield sse_chunk(delta)
        except UpstreamError as e:
            logger.error("OpenAI stream for thread %s failed: %s", thread_id, e)
            yield sse_error(e.detail)
            return
        finished = True
        yield sse_done()

    async def record_exchange():
        if finished:
            await reconciler.record_exchange(
                thread_id, req.user_id, req.message, "".join(reply_parts)
            )

    return EventSourceResponse(
        event_generator(),
        headers=SSE_HEADERS,
        ping=15,
        sep="\n",
        background=BackgroundTask(record_exchange),
    )


@router.get("/api/threads")
async def list_threads(request: Request, user_id: str | None = None, limit: int = 50, offset: int = 0):
    upstream = request.app.state.upstream
    if not user_id:
        return _error("user_id is required", 400)
    logger.info("Fetching threads for user: %s", user_id)
    return await upstream.list_threads(user_id, limit=limit, offset=offset)


@router.get("/api/threads/{thread_id}")
async def get_thread(thread_id: str, request: Request):
    upstream = request.app.state.upstream
    logger.info("Fetching thread with ID: %s", thread_id)
    return await upstream.get_thread(thread_id)


@router.delete("/api/threads/{thread_id}")
async def delete_thread(thread_id: str, request: Request, user_id: str | None = None):
    upstream = request.app.state.upstream
    reconciler = request.app.state.reconciler
    logger.info("Deleting thread with ID: %s", thread_id)
    result = await upstream.delete_thread(thread_id, user_id)
    await reconciler.remove(thread_id)
    return result
