from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from famoney.api.error_handling import register_exception_handlers
from famoney.api.routes import router
from famoney.api.schemas import Envelope
from famoney.config import get_settings
from famoney.logging import clear_request_context, get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"

_sweep_task: asyncio.Task | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and run the refresh-token sweep until shutdown."""
    global _sweep_task
    from famoney.service.runtime import get_runtime, sweep_refresh_tokens

    runtime = get_runtime()
    interval = runtime.settings.refresh_token_sweep_interval_seconds
    if interval > 0 and not runtime.settings.test_mode:
        _sweep_task = asyncio.create_task(sweep_refresh_tokens(runtime, interval))
        logger.info("refresh_token_sweep_scheduled", interval_seconds=interval)

    yield

    if _sweep_task:
        _sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _sweep_task
        _sweep_task = None
    runtime.close()
    logger.info("runtime_cleanup_complete")


app = FastAPI(title="FaMoney Ledger API", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    origins = get_settings().cors_allow_origins
    if origins:
        return origins
    # Local dev hosts only; never a wildcard
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID", "API-Version"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Attach a correlation id to the request context and echo it back.

    The id comes from the client's X-Request-ID header when present, otherwise
    a fresh UUID is generated. It is bound for structured logging and used as
    the envelope ``request_id``.
    """
    clear_request_context()
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # API responses carry account data and must not be cached by proxies
    if request.url.path.startswith("/api/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    response.headers.setdefault("API-Version", __version__)
    return response


@app.get("/healthz", response_model=Envelope, tags=["health"])
async def healthz():
    return Envelope(status="ok", data={"status": "healthy", "version": __version__})


register_exception_handlers(app)
app.include_router(router)
