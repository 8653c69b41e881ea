"""
FastAPI application for the partner program backend.

Startup creates the tables, the admin login guard and the side-effect task
queue with its worker thread; all three live on ``app.state``. Every error
response uses the same envelope: ``{"success": false, "message", "request_id"}``.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import redis
import time
import uuid
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Mapping, Optional
from partner_backend.api.v1 import api_router
from partner_backend.utils import setup_logging, get_logger
from partner_backend.utils.login_guard import AdminLoginGuard
from partner_backend.jobs.worker import TaskWorker, create_queue
from partner_backend.database import engine, Base, SessionLocal
from partner_backend.config import QUEUE_SETTINGS

SERVICE_NAME = "partner-program-backend"
SERVICE_VERSION = "1.0.0"
QUEUE_HEALTH_FIELDS = ("backend", "depth", "ready", "scheduled", "redis_active")

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)


def check_redis_health() -> bool:
    """Ping the configured Redis server."""
    redis_url = str(QUEUE_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
    timeout = float(QUEUE_SETTINGS.get("redis_health_check_timeout", 2.0))  # type: ignore[arg-type]
    try:
        redis.from_url(redis_url, socket_connect_timeout=timeout).ping()
        return True
    except (redis.RedisError, ConnectionError) as e:
        logger.warning("Redis health check failed", error=str(e))
        return False


def check_database_health() -> Optional[str]:
    """Run a trivial query; returns the error text when the database is unreachable."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return None
    except SQLAlchemyError as e:
        logger.error("Database health check failed", error=str(e))
        return str(e)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup initiated", service=SERVICE_NAME, version=SERVICE_VERSION)
    Base.metadata.create_all(bind=engine)

    app.state.admin_login_guard = AdminLoginGuard()
    queue = create_queue()
    app.state.task_queue = queue
    worker = TaskWorker(queue)
    app.state.task_worker = worker
    worker.start()
    logger.info("Application startup completed", queue_backend=queue.snapshot().get("backend"))
    try:
        yield
    finally:
        # stop() shuts the queue down so a blocked dequeue returns before the join
        worker.stop()
        logger.info("Application shutdown completed")


app = FastAPI(
    title="Partner Program Backend",
    description="""
    Partner program administration and commission ledger.

    ## Features
    * **Applications** - public partner intake with admin review
    * **Tapfiliate provisioning** - affiliates created on approval and on Stripe checkout
    * **Earnings ledger** - monthly commission totals recomputed from Tapfiliate conversions

    ## Authentication
    Admin endpoints take the configured admin token:
    ```
    Authorization: Bearer <ADMIN_API_TOKEN>
    ```
    Three failed attempts lock the client address for two hours.
    """,
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Assign X-Request-ID and log each request once it completes."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    started = time.time()

    response = await call_next(request)

    elapsed_ms = round((time.time() - started) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(elapsed_ms)
    response.headers["X-Content-Type-Options"] = "nosniff"
    logger.info(
        "Request handled",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time_ms=elapsed_ms,
        client=request.client.host if request.client else None,
        request_id=request_id
    )
    return response


def error_response(
    request: Request,
    status_code: int,
    message: Any,
    *,
    details: Optional[list] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "success": False,
        "message": message,
        "request_id": getattr(request.state, "request_id", "unknown"),
    }
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=dict(headers) if headers else None)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.warning("Request validation failed", path=request.url.path, errors=errors)
    return error_response(request, 422, "Request validation failed", details=errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.error("HTTP error", status_code=exc.status_code, detail=exc.detail, path=request.url.path)
    return error_response(request, exc.status_code, exc.detail, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True
    )
    return error_response(request, 500, "Internal server error")


def _queue_snapshot() -> Optional[dict]:
    queue = getattr(app.state, "task_queue", None)
    return queue.snapshot() if queue is not None else None


@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    snapshot = _queue_snapshot()
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "queue_backend": snapshot.get("backend", "memory") if snapshot else "none",
    }


@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Database, Redis (when enabled) and task queue status."""
    checks: Dict[str, Any] = {}
    degraded = False

    db_error = check_database_health()
    checks["database"] = "healthy" if db_error is None else f"unhealthy: {db_error}"
    degraded |= db_error is not None

    if QUEUE_SETTINGS.get("use_redis", False):
        redis_ok = check_redis_health()
        checks["redis"] = "healthy" if redis_ok else "unavailable"
        degraded |= not redis_ok

    snapshot = _queue_snapshot()
    if snapshot is not None:
        checks["queue"] = {k: snapshot[k] for k in QUEUE_HEALTH_FIELDS if k in snapshot}

    return {
        "status": "degraded" if degraded else "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "checks": checks,
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "message": "Partner Program Backend API",
        "version": SERVICE_VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }


app.include_router(api_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "partner_backend.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        reload_dirs=["partner_backend"],
    )
