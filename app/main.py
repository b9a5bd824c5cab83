"""
FastAPI application main module.
Payment orchestration service: middleware, error handling, lifespan-managed runtime.
"""
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import os
from contextlib import asynccontextmanager
from app.api.v1 import api_router
from app.exceptions import PaymentCoreError
from app.models.schemas.base import ErrorResponse
from app.runtime import build_default_runtime
from app.utils import setup_logging, get_logger
from app.utils.observability import REQUEST_ID_HEADER, ensure_request_id

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Builds the payment runtime on startup and releases its resources on shutdown.
    """
    logger.info("Application startup initiated")
    factory = getattr(app.state, "runtime_factory", None) or build_default_runtime
    runtime = factory()
    try:
        await runtime.start()
        # exposed on app state so endpoints resolve services via dependencies
        app.state.runtime = runtime
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        app.state.runtime = None
        await runtime.close()
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Payment Orchestration Service",
    description="""
    Payment job orchestration for two rails behind one job lifecycle.

    ## Rails
    * **Bank QR** - QR generation and payment verification through the bank's web portal
    * **x402 crypto** - HTTP 402 flow with USDC EIP-3009 authorizations on Avalanche
    * **Hybrid** - offer both rails for the same order

    ## Results
    Background results (QR images, verification outcomes, payment state changes,
    2FA prompts) are delivered by webhook to `WEBHOOK_URL`.

    ## Authentication
    Privileged operations (`/fiat/set-2fa`, `/x402/payment/{job_id}/confirm`) require
    the `X-Internal-API-Key` header.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)
app.state.runtime_factory = build_default_runtime

# CORS middleware - configure appropriately for production
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-PAYMENT-RESPONSE", REQUEST_ID_HEADER],
)

# Compression middleware for better performance
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Request correlation, timing and access logging
@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """Attach a request id (also passed to queued jobs as correlation id) and time the call."""
    request_id = ensure_request_id(request.headers)
    request.state.request_id = request_id
    started = time.perf_counter()
    context = {"method": request.method, "path": request.url.path, "request_id": request_id}

    logger.info(
        "Request started",
        remote_addr=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("User-Agent"),
        **context
    )

    response = await call_next(request)
    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers["X-Process-Time"] = str(elapsed_ms)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"

    logger.info("Request completed", status_code=response.status_code, process_time_ms=elapsed_ms, **context)
    return response


def _error_response(request: Request, status_code: int, message: str, code: Optional[str] = None, details: Any = None) -> JSONResponse:
    body = ErrorResponse(
        message=message,
        code=code,
        details=details,
        request_id=getattr(request.state, "request_id", "unknown"),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


# Exception handlers: every error body is an ErrorResponse
@app.exception_handler(PaymentCoreError)
async def payment_core_exception_handler(request: Request, exc: PaymentCoreError):
    """Domain errors carry their own status code and machine-readable code."""
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        "Payment core error",
        code=exc.code,
        status_code=exc.http_status,
        error=str(exc),
        request_id=getattr(request.state, "request_id", None),
        path=request.url.path,
    )
    return _error_response(request, exc.http_status, str(exc), code=exc.code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = jsonable_encoder(exc.errors())
    logger.warning(
        "Request validation failed",
        errors=details,
        request_id=getattr(request.state, "request_id", None),
        path=request.url.path,
    )
    return _error_response(request, 422, "Request validation failed", code="REQUEST_VALIDATION_ERROR", details=details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=getattr(request.state, "request_id", None),
        path=request.url.path,
    )
    return _error_response(request, exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=getattr(request.state, "request_id", None),
        path=request.url.path,
        exc_info=True
    )
    return _error_response(request, 500, "Internal server error", code="INTERNAL_ERROR")


SERVICE_INFO = {"service": "payment-orchestration", "version": app.version}


@app.get("/health", tags=["health"], summary="Service health check")
async def health_check(request: Request):
    """Queue snapshots, reserved bank orders, crypto job counts and facilitator readiness."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        return {"status": "starting", "timestamp": time.time(), **SERVICE_INFO}
    snapshot = runtime.snapshot()
    return {
        "status": "healthy" if snapshot["facilitator_ready"] else "degraded",
        "timestamp": time.time(),
        "checks": snapshot,
        **SERVICE_INFO,
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "message": "Payment Orchestration Service API",
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1",
        **SERVICE_INFO,
    }


app.include_router(api_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("UVICORN_RELOAD", "").lower() in {"1", "true", "yes"},
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
