"""API Routes."""

from fastapi import APIRouter

from .admin import router as admin_router
from .analyses import router as analyses_router
from .api_keys import router as api_keys_router
from .auth import router as auth_router
from .billing import router as billing_router
from .health import router as health_router
from .public_api import router as public_api_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(auth_router)
api_router.include_router(analyses_router)
api_router.include_router(api_keys_router)
api_router.include_router(billing_router)
api_router.include_router(admin_router)
api_router.include_router(public_api_router)
