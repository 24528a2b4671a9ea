"""Main router for API v1."""

from fastapi import APIRouter

from estimator.api.v1 import estimates, health, sessions

router = APIRouter(prefix="/v1")

# Include sub-routers
router.include_router(health.router, tags=["health"])
router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
router.include_router(estimates.router, tags=["estimates"])
