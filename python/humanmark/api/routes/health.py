"""Health check endpoint."""

from fastapi import APIRouter

from humanmark.config import get_settings
from humanmark.responses import success_response

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Liveness check. Does not touch the database, Redis or the provider."""
    return success_response({"status": "ok", "enabled": get_settings().enabled})
