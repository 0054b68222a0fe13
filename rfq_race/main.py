"""
main.py — RFQ Race Engine application

Wires logging, schema sync, rate limiting, error handling, the RFQ router,
and (optionally) the background race tick.

Called by: uvicorn rfq_race.main:app
Depends on: config, logging_config, startup, scheduler, routers
"""

import asyncio
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import settings
from .http_client import close_clients
from .logging_config import setup_logging
from .rate_limit import limiter
from .routers.rfq import router as rfq_router
from .schemas.errors import ErrorResponse
from .startup import run_startup_migrations


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    run_startup_migrations()

    scheduler_task = None
    if settings.scheduler_enabled:
        from .scheduler import start_scheduler

        scheduler_task = asyncio.create_task(start_scheduler())

    yield

    if scheduler_task:
        scheduler_task.cancel()
    await close_clients()


app = FastAPI(title="RFQ Race Engine", version=__version__, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ── Request ID middleware ───────────────────────────────────────────────


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


# ── Error handlers ──────────────────────────────────────────────────────


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = ErrorResponse(
        error=str(exc.detail),
        status_code=exc.status_code,
        code=getattr(exc, "code", ""),
        request_id=_request_id(request),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    body = ErrorResponse(
        error="Validation error",
        status_code=422,
        code="validation_error",
        request_id=_request_id(request),
        detail=[
            {"loc": list(e.get("loc", [])), "msg": e.get("msg", ""), "type": e.get("type", "")}
            for e in exc.errors()
        ],
    )
    return JSONResponse(status_code=422, content=body.model_dump())


app.include_router(rfq_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}
