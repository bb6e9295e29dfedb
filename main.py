import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi import HTTPException as FastAPIHTTPException
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.starlette import StarletteIntegration

from app.api import exports, misc
from app.core.dependencies import build_export_runner, build_export_scheduler
from app.core.logging_utils import configure_logging
from app.core.settings import settings

load_dotenv()

# Configure logging (console + rotating file; JSON by default)
configure_logging(settings)
logger = logging.getLogger("app")

# Initialize Sentry if DSN provided
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[StarletteIntegration()],
        traces_sample_rate=float(settings.SENTRY_TRACES_SAMPLE_RATE or 0.0),
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    runner = build_export_runner()
    app.state.export_runner = runner
    scheduler = None
    if settings.EXPORT_SCHEDULER_ENABLED:
        scheduler = build_export_scheduler(runner)
        scheduler.start()
    else:
        logger.info("Export scheduler disabled")
    app.state.export_scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(lifespan=lifespan)

app.include_router(exports.router)
app.include_router(misc.router)


# Request logging middleware with request id
@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start = time.perf_counter()
    duration_ms: Optional[int] = None
    # Stash request_id for downstream handlers
    request.state.request_id = request_id

    extra_ctx = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
    logger.info("request.start", extra=extra_ctx)
    try:
        response = await call_next(request)
    except Exception:
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.exception("request.error", extra={**extra_ctx, "duration_ms": duration_ms})
        # Re-raise to be handled by 500 handler
        raise

    duration_ms = int((time.perf_counter() - start) * 1000)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "request.end",
        extra={**extra_ctx, "status_code": response.status_code, "duration_ms": duration_ms},
    )
    return response


def _with_request_id(request: Request, resp: JSONResponse) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        resp.headers["X-Request-ID"] = str(request_id)
    return resp


@app.exception_handler(FastAPIHTTPException)
async def http_exception_handler(request: Request, exc: FastAPIHTTPException):
    """Mirror FastAPI's default JSON structure and log client/server errors."""
    status = getattr(exc, "status_code", 500) or 500
    if status >= 500:
        logger.error(
            "http.error",
            extra={"path": request.url.path, "status_code": status, "detail": str(exc.detail)},
        )
    resp = JSONResponse({"detail": exc.detail}, status_code=status, headers=exc.headers)
    return _with_request_id(request, resp)


@app.exception_handler(500)
async def server_error_handler(request: Request, exc):
    logger.error(
        "unhandled.error",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"path": request.url.path},
    )
    request_id = getattr(request.state, "request_id", None)
    resp = JSONResponse(
        {"detail": "Internal Server Error", "request_id": request_id}, status_code=500
    )
    return _with_request_id(request, resp)
