"""Dependency injection for API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends

from estimator.core.events import EventBus, get_event_bus
from estimator.core.exceptions import SessionNotFoundError
from estimator.core.session import EstimateSession, SessionManager, get_session_manager
from estimator.core.store import EstimateStore, get_estimate_store


async def get_sessions() -> SessionManager:
    """Get the session manager."""
    return get_session_manager()


async def get_events() -> EventBus:
    """Get the event bus."""
    return get_event_bus()


async def get_store() -> EstimateStore:
    """Get the estimate store."""
    return get_estimate_store()


async def get_session_by_id(
    session_id: UUID,
    sessions: Annotated[SessionManager, Depends(get_sessions)],
) -> EstimateSession:
    """Get a session by ID.

    Raises:
        SessionNotFoundError: If the session is unknown or expired.
    """
    session = await sessions.get_session(session_id)
    if not session:
        raise SessionNotFoundError(str(session_id))
    return session


# Type aliases for cleaner signatures
SessionsDep = Annotated[SessionManager, Depends(get_sessions)]
EventsDep = Annotated[EventBus, Depends(get_events)]
StoreDep = Annotated[EstimateStore, Depends(get_store)]
SessionDep = Annotated[EstimateSession, Depends(get_session_by_id)]
