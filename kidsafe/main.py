import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kidsafe.config import settings
from kidsafe.core.rate_limit import limiter
from kidsafe.database import get_db
from kidsafe.routers import approved_videos, auth, carryover, children, kids, schedules

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan context manager
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan.

    Carryover is triggered externally (child reads, cron via the CLI or
    the carryover endpoint); no background tasks are started here.
    """
    logger.info("%s started", settings.APP_NAME)
    yield
    from kidsafe.core.redis_client import close_redis
    await close_redis()
    logger.info("%s shutting down", settings.APP_NAME)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
)


# -- Middleware ---------------------------------------------------------------
@app.middleware("http")
async def fix_redirect_scheme(request: Request, call_next):
    """Ensure redirects use https when behind a TLS-terminating reverse proxy."""
    if request.headers.get("x-forwarded-proto") == "https":
        request.scope["scheme"] = "https"
    return await call_next(request)


app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Operator-Key"],
)

# -- Rate limiting ------------------------------------------------------------
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# -- Persistence failures -----------------------------------------------------
@app.exception_handler(SQLAlchemyError)
async def persistence_failure_handler(request: Request, exc: SQLAlchemyError):
    """Database errors are transient from the client's point of view.

    Every mutating operation is idempotent or append-only, so the whole
    request can be retried.
    """
    logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable", "retryable": True},
        headers={"Retry-After": "5"},
    )


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
@app.get("/health", tags=["health"])
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check with DB and Redis connectivity verification."""
    from kidsafe.core.redis_client import get_redis

    checks: dict[str, str] = {"db": "ok", "redis": "ok"}

    try:
        await db.execute(select(1))
    except Exception:
        checks["db"] = "error"

    try:
        redis = await get_redis()
        if redis is None:
            checks["redis"] = "unavailable"
        else:
            await redis.ping()
    except Exception:
        checks["redis"] = "error"

    # "unavailable" = optional service not configured; only "error" = degraded
    degraded = any(v == "error" for v in checks.values())
    return {"status": "degraded" if degraded else "ok", "app": settings.APP_NAME, **checks}


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(auth.router, prefix=settings.API_V1_PREFIX)
app.include_router(children.router, prefix=settings.API_V1_PREFIX)
app.include_router(approved_videos.router, prefix=settings.API_V1_PREFIX)
app.include_router(schedules.router, prefix=settings.API_V1_PREFIX)
app.include_router(kids.router, prefix=settings.API_V1_PREFIX)
app.include_router(carryover.router, prefix=settings.API_V1_PREFIX)
