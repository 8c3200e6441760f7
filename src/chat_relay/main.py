import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api.routes import router
from .config import (
    DATA_DIR,
    MIRROR_SQLITE_PATH,
    PORT,
    ROOT_PATH,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
)
from .data.sqlite_mirror import SQLiteMirror
from .data.supabase_mirror import SupabaseMirror
from .errors import UpstreamError
from .relay.reconciler import CompletionReconciler
from .upstream.openai_provider import OpenAIProvider
from .upstream.soulgraph import SoulGraphClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _open_mirror():
    if SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY:
        logger.info("Initializing Supabase mirror...")
        mirror = SupabaseMirror(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
    else:
        logger.info("Supabase not configured, mirroring to %s", MIRROR_SQLITE_PATH)
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        mirror = SQLiteMirror(str(MIRROR_SQLITE_PATH))
    await mirror.initialize()
    return mirror


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    mirror = await _open_mirror()

    logger.info("Initializing upstream clients...")
    upstream = SoulGraphClient()
    openai_provider = OpenAIProvider()

    app.state.mirror = mirror
    app.state.upstream = upstream
    app.state.openai_provider = openai_provider
    app.state.reconciler = CompletionReconciler(upstream, mirror)

    logger.info("Startup complete, relay ready")
    yield

    # Shutdown
    logger.info("Shutting down...")
    await openai_provider.close()
    await upstream.close()
    await mirror.close()


async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.http_status)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()]
    message = f"Invalid or missing field: {', '.join(f for f in fields if f)}" if fields else "Invalid request"
    return JSONResponse({"error": message}, status_code=400)


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="Chat Relay",
        root_path=ROOT_PATH,
        lifespan=lifespan if use_lifespan else None,
    )
    app.add_exception_handler(UpstreamError, upstream_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    uvicorn.run("chat_relay.main:app", host="0.0.0.0", port=PORT)
