"""Estimate session endpoints."""

import asyncio
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sse_starlette.sse import EventSourceResponse

from estimator.api.deps import EventsDep, SessionDep, SessionsDep, StoreDep
from estimator.config import settings
from estimator.core.events import Event
from estimator.core.exceptions import EstimateNotFoundError, EstimatorError
from estimator.core.session import EstimateSession
from estimator.core.store import EstimateStore
from estimator.core.tree import find_node
from estimator.models.estimate import (
    Customer,
    GroupNode,
    ItemNode,
    MoveDirection,
    NodeType,
    TreeChanges,
)
from estimator.models.session import (
    MutationResponse,
    SaveResponse,
    SessionCreate,
    SessionResponse,
)
from estimator.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

CATALOG_LOCKED_FIELDS = ("title", "description", "unit")


class SessionListResponse(BaseModel):
    """Response for listing sessions."""

    sessions: list[SessionResponse]
    total: int
    limit: int
    offset: int


class CustomerSelection(BaseModel):
    """Customer to attach to the estimate, or null to clear it."""

    customer: Customer | None = None


class GroupCreate(BaseModel):
    """Request to add a group."""

    name: str = Field(..., min_length=1, max_length=200)
    parent_group_id: str | None = None


class GroupUpdate(BaseModel):
    """Request to rename or reposition a group."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    order_index: int | None = Field(default=None, ge=0)

    @field_validator("name", "order_index")
    @classmethod
    def _not_null(cls, value):
        # Omit a field to leave it unchanged; null is not a value
        if value is None:
            raise ValueError("must not be null")
        return value


class ItemCreate(BaseModel):
    """Request to add an item, typed manually or picked from a costbook."""

    group_id: str | None = None
    title: str | None = None
    description: str = Field(..., min_length=1)
    quantity: float = Field(default=1, gt=0)
    unit: str = Field(..., min_length=1)
    material_cost: float | None = Field(default=None, ge=0)
    labor_cost: float | None = Field(default=None, ge=0)
    equipment_cost: float | None = Field(default=None, ge=0)
    other_cost: float | None = Field(default=None, ge=0)
    subcontract_cost: float | None = Field(default=None, ge=0)
    item_id: str | None = None
    costbook_item_id: str | None = None


class ItemUpdate(BaseModel):
    """Request to change some fields of an item."""

    title: str | None = None
    description: str | None = Field(default=None, min_length=1)
    quantity: float | None = Field(default=None, gt=0)
    unit: str | None = Field(default=None, min_length=1)
    material_cost: float | None = Field(default=None, ge=0)
    labor_cost: float | None = Field(default=None, ge=0)
    equipment_cost: float | None = Field(default=None, ge=0)
    other_cost: float | None = Field(default=None, ge=0)
    subcontract_cost: float | None = Field(default=None, ge=0)
    order_index: int | None = Field(default=None, ge=0)

    @field_validator("description", "quantity", "unit", "order_index")
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("must not be null")
        return value


class MoveRequest(BaseModel):
    """Request to move a node to a new parent and position."""

    node_id: str
    node_type: NodeType
    new_parent_group_id: str | None = None
    new_order_index: int = 0


class MoveStepRequest(BaseModel):
    """Request to swap a node with its neighbouring sibling."""

    node_id: str
    node_type: NodeType
    direction: MoveDirection


async def persist_session(session: EstimateSession, store: EstimateStore) -> SaveResponse:
    """Write a session's pending rows and totals to the store."""
    if not session.current_estimate_id:
        customer_id = (
            session.selected_customer.customer_id if session.selected_customer else None
        )
        estimate = await store.create_estimate(customer_id)
        session.set_estimate_id(estimate.id)

    if session.selected_customer:
        await store.upsert_customer(session.selected_customer)

    estimate_id = session.current_estimate_id
    snapshot, changes = session.snapshot()
    id_mapping = await store.apply_changes(estimate_id, changes)
    session.mark_saved(snapshot, id_mapping)
    await store.save_totals(estimate_id, session.totals)

    return SaveResponse(
        estimate_id=estimate_id,
        id_mapping=id_mapping,
        saved_rows=(
            len(changes.upserted_groups)
            + len(changes.upserted_items)
            + len(changes.deleted_group_ids)
            + len(changes.deleted_item_ids)
        ),
        totals=session.totals,
    )


async def autosave_background(session: EstimateSession, store: EstimateStore) -> None:
    """Best-effort save scheduled after an edit."""
    try:
        await persist_session(session, store)
    except EstimatorError as e:
        logger.error(
            "session.autosave_failed",
            session_id=str(session.id),
            error=e.message,
        )


def _mutation_response(
    session: EstimateSession,
    changes: TreeChanges,
    background_tasks: BackgroundTasks,
    store: EstimateStore,
    node_id: str | None = None,
    node_type: NodeType | None = None,
) -> MutationResponse:
    if settings.autosave and not changes.is_empty:
        background_tasks.add_task(autosave_background, session, store)

    node = find_node(session.tree, node_id, node_type) if node_id and node_type else None
    return MutationResponse(node=node, changes=changes, totals=session.totals)


@router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open an estimate session",
    description="Start a new empty estimate, or load an existing one from the store.",
)
async def create_session(
    data: SessionCreate,
    sessions: SessionsDep,
    store: StoreDep,
) -> SessionResponse:
    """Open a new editing session."""
    if not data.estimate_id:
        session = await sessions.create_session(customer=data.customer)
        return SessionResponse.from_session(session)

    estimate = await store.get_estimate(data.estimate_id)
    if not estimate:
        raise EstimateNotFoundError(data.estimate_id)

    customer = data.customer
    if customer is None and estimate.customer_id:
        customer = await store.get_customer(estimate.customer_id)

    groups, items = await store.fetch_tree_records(estimate.id)
    session = await sessions.create_session(estimate_id=estimate.id, customer=customer)
    warnings = session.load(groups, items)
    return SessionResponse.from_session(session, warnings)


@router.get(
    "",
    response_model=SessionListResponse,
    summary="List open sessions",
)
async def list_sessions(
    sessions: SessionsDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> SessionListResponse:
    """List open sessions, most recently edited first."""
    page, total = await sessions.list_sessions(limit=limit, offset=offset)
    return SessionListResponse(
        sessions=[SessionResponse.from_session(s) for s in page],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{session_id}",
    response_model=SessionResponse,
    summary="Get the current tree and totals",
)
async def get_session(session: SessionDep) -> SessionResponse:
    """Get the session's tree, totals and companion state."""
    return SessionResponse.from_session(session)


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a session",
)
async def delete_session(session: SessionDep, sessions: SessionsDep) -> None:
    """Discard the session; unsaved edits are lost."""
    await sessions.delete_session(session.id)


@router.put(
    "/{session_id}/customer",
    response_model=SessionResponse,
    summary="Select the estimate's customer",
)
async def select_customer(
    session: SessionDep,
    data: CustomerSelection,
) -> SessionResponse:
    """Attach or clear the selected customer."""
    session.select_customer(data.customer)
    return SessionResponse.from_session(session)


@router.post(
    "/{session_id}/groups",
    response_model=MutationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a group",
)
async def add_group(
    session: SessionDep,
    data: GroupCreate,
    store: StoreDep,
    background_tasks: BackgroundTasks,
) -> MutationResponse:
    """Add a named group under a parent group, or at the root."""
    group, changes = session.add_group(data.name, data.parent_group_id)
    return _mutation_response(
        session, changes, background_tasks, store, group.id, NodeType.GROUP
    )


@router.patch(
    "/{session_id}/groups/{group_id}",
    response_model=MutationResponse,
    summary="Update a group",
)
async def update_group(
    session: SessionDep,
    group_id: str,
    data: GroupUpdate,
    store: StoreDep,
    background_tasks: BackgroundTasks,
) -> MutationResponse:
    """Rename a group or change its position among its siblings."""
    if find_node(session.tree, group_id, NodeType.GROUP) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Group not found: {group_id}",
        )

    patch = data.model_dump(exclude_unset=True)
    if "name" in patch:
        patch["name"] = patch["name"].strip()
        if not patch["name"]:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Group name is required",
            )

    changes = session.update_node(GroupNode(id=group_id, **patch))
    return _mutation_response(
        session, changes, background_tasks, store, group_id, NodeType.GROUP
    )


@router.post(
    "/{session_id}/items",
    response_model=MutationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an item",
)
async def add_item(
    session: SessionDep,
    data: ItemCreate,
    store: StoreDep,
    background_tasks: BackgroundTasks,
) -> MutationResponse:
    """Add a cost line to a group."""
    item = ItemNode(**data.model_dump(exclude={"group_id"}))
    added, changes = session.add_item(item, data.group_id)
    return _mutation_response(
        session, changes, background_tasks, store, added.id, NodeType.ITEM
    )


@router.patch(
    "/{session_id}/items/{item_id}",
    response_model=MutationResponse,
    summary="Update an item",
)
async def update_item(
    session: SessionDep,
    item_id: str,
    data: ItemUpdate,
    store: StoreDep,
    background_tasks: BackgroundTasks,
) -> MutationResponse:
    """Change some fields of an item; costs are recomputed from the result."""
    existing = find_node(session.tree, item_id, NodeType.ITEM)
    if existing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Item not found: {item_id}",
        )

    patch = data.model_dump(exclude_unset=True)
    if existing.mode == "catalog":
        locked = [
            name
            for name in CATALOG_LOCKED_FIELDS
            if name in patch and patch[name] != getattr(existing, name)
        ]
        if locked:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Catalog item fields are read-only: {', '.join(locked)}",
            )

    changes = session.update_node(ItemNode(id=item_id, **patch))
    return _mutation_response(
        session, changes, background_tasks, store, item_id, NodeType.ITEM
    )


@router.post(
    "/{session_id}/move",
    response_model=MutationResponse,
    summary="Move a node",
    description="Moves are all-or-nothing: an unknown node or target parent leaves the tree unchanged.",
)
async def move_node(
    session: SessionDep,
    data: MoveRequest,
    store: StoreDep,
    background_tasks: BackgroundTasks,
) -> MutationResponse:
    """Move a node to a new parent and position."""
    changes = session.move_node(
        data.node_id, data.node_type, data.new_parent_group_id, data.new_order_index
    )
    return _mutation_response(
        session, changes, background_tasks, store, data.node_id, data.node_type
    )


@router.post(
    "/{session_id}/move-step",
    response_model=MutationResponse,
    summary="Move a node up or down one place",
)
async def move_node_step(
    session: SessionDep,
    data: MoveStepRequest,
    store: StoreDep,
    background_tasks: BackgroundTasks,
) -> MutationResponse:
    """Swap a node with its previous or next sibling."""
    changes = session.move_node_by_direction(data.node_id, data.node_type, data.direction)
    return _mutation_response(
        session, changes, background_tasks, store, data.node_id, data.node_type
    )


@router.delete(
    "/{session_id}/nodes/{node_type}/{node_id}",
    response_model=MutationResponse,
    summary="Delete a node",
    description="Deleting a group deletes everything inside it. Deleting a missing node is a no-op.",
)
async def delete_node(
    session: SessionDep,
    node_type: NodeType,
    node_id: str,
    store: StoreDep,
    background_tasks: BackgroundTasks,
) -> MutationResponse:
    """Delete a node and its subtree."""
    changes = session.delete_node(node_id, node_type)
    return _mutation_response(session, changes, background_tasks, store)


@router.post(
    "/{session_id}/save",
    response_model=SaveResponse,
    summary="Persist the session",
)
async def save_session(session: SessionDep, store: StoreDep) -> SaveResponse:
    """Write pending rows, swap placeholder ids for stored ones and store totals."""
    return await persist_session(session, store)


@router.get(
    "/{session_id}/stream",
    summary="Stream session events (SSE)",
)
async def stream_session_events(
    session: SessionDep,
    events: EventsDep,
) -> EventSourceResponse:
    """Stream tree and totals updates using Server-Sent Events."""

    async def event_generator():
        queue = events.subscribe(session.id)

        try:
            # Send the current totals so the client starts in sync
            yield {
                "event": "connected",
                "data": Event(
                    event_type="connected",
                    data={
                        "session_id": str(session.id),
                        "totals": session.totals.model_dump(),
                    },
                ).to_json(),
            }

            while True:
                try:
                    event: Event = await asyncio.wait_for(queue.get(), timeout=30.0)
                    yield {
                        "event": event.event_type,
                        "data": event.to_json(),
                    }
                except asyncio.TimeoutError:
                    # Send keepalive
                    yield {"event": "keepalive", "data": "{}"}

        finally:
            events.unsubscribe(session.id, queue)

    return EventSourceResponse(event_generator())
