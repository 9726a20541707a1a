"""Health check endpoints."""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_admin_user
from infrastructure.config import get_settings
from infrastructure.database import get_db
from infrastructure.database.models.user import User
from services.citation_checker import CitationChecker, get_citation_checker
from services.kv_store import KeyValueStore, RedisKeyValueStore, get_kv_store

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


async def _kv_status(kv_store: KeyValueStore) -> str:
    if not isinstance(kv_store, RedisKeyValueStore):
        return "memory"
    try:
        await asyncio.wait_for(kv_store.ping(), timeout=3.0)
        return "ok"
    except TimeoutError:
        logger.error("Health check Redis timeout")
        return "error: redis timeout"
    except Exception as e:
        logger.error("Health check Redis error: %s", e)
        return "error: redis unavailable"


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/db")
async def health_check_db(db: AsyncSession = Depends(get_db)):
    """Health check with database connectivity."""
    try:
        result = await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=5.0)
        result.scalar()
        db_status = "connected"
    except TimeoutError:
        logger.error("Health check DB timeout")
        db_status = "error: database timeout"
    except Exception as e:
        logger.error("Health check DB error: %s", str(e))
        db_status = "error: database check failed"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "database": db_status,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/kv")
async def health_kv(kv_store: KeyValueStore = Depends(get_kv_store)):
    """Key-value store connectivity; in-process storage is always up."""
    kv_status = await _kv_status(kv_store)
    if kv_status.startswith("error"):
        raise HTTPException(status_code=503, detail=kv_status)
    return {"status": "healthy", "service": "kv", "backend": kv_status}


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    kv_store: KeyValueStore = Depends(get_kv_store),
):
    """Kubernetes-style readiness probe."""
    db_ok = False
    try:
        await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=5.0)
        db_ok = True
    except Exception as e:
        logger.warning("Readiness DB check failed: %s", e)

    kv_status = await _kv_status(kv_store)

    # Redis outages degrade rate limiting and caching but do not block traffic
    return {
        "ready": db_ok,
        "database": "ok" if db_ok else "unavailable",
        "kv": "degraded" if kv_status.startswith("error") else kv_status,
    }


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}


@router.get("/health/services")
async def services_check(
    admin_user: User = Depends(get_current_admin_user),
    checker: CitationChecker = Depends(get_citation_checker),
):
    """Check configuration of external services."""
    services = {
        name: {"configured": provider.configured, "model": provider.model}
        for name, provider in checker.providers.items()
    }
    services["stripe"] = {
        "configured": bool(settings.stripe_secret_key),
        "webhook_secret_set": bool(settings.stripe_webhook_secret),
    }

    all_configured = all(s["configured"] for s in services.values())

    return {
        "status": "healthy" if all_configured else "degraded",
        "services": services,
        "timestamp": datetime.now(UTC).isoformat(),
    }
