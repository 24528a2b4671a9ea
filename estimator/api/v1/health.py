"""Health check endpoints."""

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from estimator import __version__
from estimator.api.deps import SessionsDep
from estimator.config import settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    environment: str
    active_sessions: int
    timestamp: datetime


@router.get("/health", response_model=HealthResponse)
async def health_check(sessions: SessionsDep) -> HealthResponse:
    """Check API health status."""
    _, active = await sessions.list_sessions(limit=0)
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        active_sessions=active,
        timestamp=datetime.utcnow(),
    )
