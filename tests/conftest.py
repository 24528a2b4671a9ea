"""Pytest configuration and fixtures."""

import pytest
from httpx import ASGITransport, AsyncClient

from estimator.api.deps import get_store
from estimator.core.events import EventBus
from estimator.core.session import SessionManager, get_session_manager
from estimator.core.store import EstimateStore
from estimator.main import app
from estimator.models.estimate import GroupRecord, ItemRecord


@pytest.fixture
def session_manager() -> SessionManager:
    """Create a fresh session manager with its own event bus."""
    return SessionManager(events=EventBus())


@pytest.fixture
def store(tmp_path) -> EstimateStore:
    """Create an estimate store backed by a temporary database."""
    return EstimateStore(db_path=tmp_path / "estimates.db")


@pytest.fixture
async def client(store: EstimateStore) -> AsyncClient:
    """Create an async test client with a fresh session manager and store."""
    # Reset the session manager for each test
    manager = get_session_manager()
    manager._sessions.clear()
    app.dependency_overrides[get_store] = lambda: store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Cleanup after test
    app.dependency_overrides.clear()
    manager._sessions.clear()


@pytest.fixture
def sample_groups() -> list[GroupRecord]:
    """Kitchen renovation: one top-level group with a nested sub-group."""
    return [
        GroupRecord(id="g-kitchen", estimate_id="q-1", name="Kitchen", order_index=0),
        GroupRecord(
            id="g-cabinets",
            estimate_id="q-1",
            name="Cabinets",
            order_index=1,
            parent_group_id="g-kitchen",
        ),
        GroupRecord(id="g-bath", estimate_id="q-1", name="Bathroom", order_index=1),
    ]


@pytest.fixture
def sample_items() -> list[ItemRecord]:
    """Items spread over the sample groups."""
    return [
        ItemRecord(
            id="i-demo",
            estimate_id="q-1",
            group_id="g-kitchen",
            description="Demolition",
            quantity=1,
            unit="ea",
            labor_cost=400,
            order_index=0,
        ),
        ItemRecord(
            id="i-uppers",
            estimate_id="q-1",
            group_id="g-cabinets",
            description="Upper cabinets",
            quantity=4,
            unit="lf",
            material_cost=150,
            labor_cost=50,
            order_index=0,
        ),
        ItemRecord(
            id="i-tile",
            estimate_id="q-1",
            group_id="g-bath",
            description="Floor tile",
            quantity=10,
            unit="sq ft",
            material_cost=10,
            labor_cost=20,
            order_index=0,
        ),
    ]
