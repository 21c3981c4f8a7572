from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import inspect

from downloadgate.config import settings
from downloadgate.database import engine
from downloadgate.logging_config import setup_logging
from downloadgate.middleware.logging import CORRELATION_HEADER, LoggingMiddleware
from downloadgate.middleware.rate_limit import limiter
from downloadgate.routers import access, admin, downloads
from downloadgate.scheduler import shutdown_scheduler, start_scheduler
from downloadgate.services.discord_service import send_error_alert

# Database tables are managed by Alembic migrations
# Run: alembic upgrade head

REQUIRED_TABLES = {"products", "access_gates", "download_tokens", "redemption_records"}

logger = structlog.get_logger()


def check_database_tables() -> None:
    """Fail fast when migrations have not been applied."""
    existing = set(inspect(engine).get_table_names())
    missing = REQUIRED_TABLES - existing
    if missing:
        raise RuntimeError(
            f"Database tables missing: {', '.join(sorted(missing))}. "
            "Run `alembic upgrade head` before starting the service."
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - logging, schema check, scheduler."""
    setup_logging()
    check_database_tables()
    start_scheduler()
    yield
    shutdown_scheduler()


app = FastAPI(
    title="DownloadGate",
    description="Access-gated download token issuance and redemption",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    correlation_id = getattr(request.state, "correlation_id", None)
    logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=exc)
    await send_error_alert(
        type(exc).__name__,
        str(exc),
        path=request.url.path,
        correlation_id=correlation_id,
        status_code=500,
    )
    headers = {CORRELATION_HEADER: correlation_id} if correlation_id else None
    return JSONResponse(
        status_code=500, content={"detail": "Internal Server Error"}, headers=headers
    )


app.add_middleware(LoggingMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(access.router, prefix="/api/v1", tags=["access"])
app.include_router(downloads.router, prefix="/api/v1", tags=["downloads"])
app.include_router(admin.router, prefix="/api/v1", tags=["admin"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
