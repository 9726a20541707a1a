"""LLM Navigator - Main FastAPI Application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.middleware.http import register_http_middleware
from api.middleware.rate_limit import limiter
from api.routes import api_router
from infrastructure.config import get_settings
from infrastructure.database import close_db, init_db
from infrastructure.logging_config import setup_logging
from infrastructure.observability import init_sentry
from services.kv_store import RedisKeyValueStore, close_kv_store, get_kv_store

settings = get_settings()
logger = logging.getLogger(__name__)

# Initialised at import so errors during startup are reported too
init_sentry(settings)


async def _check_kv_store() -> None:
    kv_store = get_kv_store()
    if isinstance(kv_store, RedisKeyValueStore):
        try:
            await kv_store.ping()
            logger.info("Redis connectivity confirmed")
        except Exception as e:
            # Rate limits and webhook idempotency degrade until Redis returns
            logger.critical("Redis is unreachable (%s)", e)
    elif settings.is_production:
        logger.critical(
            "REDIS_URL is not set in production: webhook idempotency and the "
            "current-analysis cache are per process."
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    setup_logging(
        json_output=settings.is_production and not settings.debug,
        level="DEBUG" if settings.debug else "INFO",
    )
    logger.info(
        "Starting %s v%s (%s)", settings.app_name, settings.app_version, settings.environment
    )
    settings.validate_production_secrets()

    if settings.is_development:
        logger.info("Development mode - creating database tables")
        await init_db()

    await _check_kv_store()

    yield

    logger.info("Shutting down...")
    await close_kv_store()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    description="Measures how often AI assistants cite a website",
    version=settings.app_version,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

# app.state.limiter backs the @limiter.limit decorators; the middleware
# applies the default limit to every other route
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None)
    if settings.is_production:
        # Type and a truncated message only
        logger.error(
            "Unhandled %s: %s",
            type(exc).__name__,
            str(exc)[:200],
            extra={"request_id": request_id},
        )
    else:
        logger.error("Unhandled exception", exc_info=exc, extra={"request_id": request_id})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


register_http_middleware(app, production=settings.is_production)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "X-Requested-With",
        "X-API-Key",
        "X-Request-ID",
    ],
    expose_headers=["X-Request-ID"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Service name, version and where to look next."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs" if settings.is_development else "disabled",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        workers=1 if settings.is_development else settings.workers,
    )
