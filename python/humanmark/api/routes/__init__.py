"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
"""

from fastapi import APIRouter

from humanmark.api.routes.flows import router as flows_router
from humanmark.api.routes.health import router as health_router


def create_api_router() -> APIRouter:
    """Create the API router with all routes registered."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(flows_router, tags=["flows"])
    return api_router


__all__ = ["create_api_router"]
