"""Health check endpoints.

Provides endpoints for monitoring service health and readiness.
"""

from fastapi import APIRouter
from pydantic import BaseModel

from acp_checkout.dependencies import get_session_store
from acp_checkout.infrastructure.config import settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    service: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health.

    Returns:
        Health status with service name and version.
    """
    return HealthResponse(
        status="healthy",
        service="acp-checkout",
        version=settings.api_version,
    )


@router.get("/ready")
async def readiness_check() -> dict[str, str | int]:
    """Check if service is ready to accept requests.

    Returns:
        Readiness status with the number of stored sessions.
    """
    return {"status": "ready", "sessions": len(get_session_store())}
