import json


def format_sse_event(data: dict) -> dict:
    """Format a frame payload for sse-starlette's EventSourceResponse."""
    return {"data": json.dumps(data)}


def sse_thread_id(thread_id: str) -> dict:
    return format_sse_event({"thread_id": thread_id})


def sse_chunk(text: str) -> dict:
    return format_sse_event({"chunk": text})


def sse_done() -> dict:
    return format_sse_event({"done": True})


def sse_error(error: str) -> dict:
    return format_sse_event({"error": error})
