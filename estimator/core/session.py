"""Estimate editing sessions."""

from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Callable, Iterable, Mapping
from uuid import UUID, uuid4

from estimator.config import settings
from estimator.core.actions import (
    AddNodeAction,
    DeleteNodeAction,
    MoveNodeAction,
    MoveStepAction,
    TreeAction,
    UpdateNodeAction,
    reduce,
)
from estimator.core.events import EventBus, get_event_bus
from estimator.core.exceptions import ValidationError
from estimator.core.totals import compute_totals
from estimator.core.tree import (
    build_tree_with_warnings,
    diff_trees,
    find_node,
    iter_nodes,
    rekey_tree,
)
from estimator.models.estimate import (
    Customer,
    EstimateNode,
    EstimateTotals,
    EstimateTree,
    GroupNode,
    GroupRecord,
    IntegrityWarning,
    ItemNode,
    ItemRecord,
    MoveDirection,
    NodeType,
    TreeChanges,
    placeholder_id,
)
from estimator.utils.logging import get_logger

Listener = Callable[[str, dict[str, Any]], None]


def _as_stored(tree: EstimateTree, warnings: list[IntegrityWarning]) -> EstimateTree:
    """Put back the broken parent references the builder cleared.

    Used as the saved snapshot after a load, so the repaired rows show up
    as pending changes and the next save writes them.
    """
    stale: dict[tuple[NodeType, str], str] = {}
    for warning in warnings:
        if warning.missing_parent_id:
            kind = NodeType.ITEM if warning.kind == "orphan_item" else NodeType.GROUP
            stale[(kind, warning.node_id)] = warning.missing_parent_id
    if not stale:
        return tree

    restored = []
    for node in tree:
        key = (node.node_type, node.id)
        if key in stale:
            field = "group_id" if isinstance(node, ItemNode) else "parent_group_id"
            node = node.model_copy(update={field: stale[key]})
        restored.append(node)
    return tuple(restored)


class EstimateSession:
    """State of the estimate currently open for editing.

    Holds the tree, its totals and the companion customer and estimate
    id. Every mutation recomputes the totals before returning, so a
    reader never sees a fresh tree paired with stale totals.
    """

    def __init__(
        self,
        estimate_id: str | None = None,
        customer: Customer | None = None,
        session_id: UUID | None = None,
    ):
        self.id = session_id or uuid4()
        self.current_estimate_id = estimate_id
        self.selected_customer = customer
        self.tree: EstimateTree = ()
        self.totals: EstimateTotals = compute_totals(self.tree)
        self.created_at = datetime.utcnow()
        self.updated_at = self.created_at
        self._saved_tree: EstimateTree = ()
        self._listeners: list[Listener] = []
        self.logger = get_logger("session").bind(session_id=str(self.id))

    # Observers

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event_type: str, data: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            listener(event_type, data)

    def _set_tree(self, tree: EstimateTree) -> None:
        self.tree = tree
        self.totals = compute_totals(tree)
        self.updated_at = datetime.utcnow()

    # Loading

    def load(
        self,
        groups: Iterable[GroupRecord | Mapping[str, Any]],
        items: Iterable[ItemRecord | Mapping[str, Any]],
    ) -> list[IntegrityWarning]:
        """Replace the tree with one built from flat store rows."""
        tree, warnings = build_tree_with_warnings(groups, items)
        self._saved_tree = _as_stored(tree, warnings)
        self._set_tree(tree)
        node_count = sum(1 for _ in iter_nodes(tree))

        self.logger.info(
            "session.tree_loaded",
            estimate_id=self.current_estimate_id,
            node_count=node_count,
            warnings=len(warnings),
        )
        self._emit("tree_loaded", {"node_count": node_count, "warnings": len(warnings)})
        self._emit("totals_updated", self.totals.model_dump())
        return warnings

    # Mutations

    def dispatch(self, action: TreeAction) -> TreeChanges:
        """Apply an action, recompute totals and notify listeners.

        Returns the rows the action touched. A no-op action returns empty
        changes and notifies nobody.
        """
        before = self.tree
        after = reduce(before, action)
        changes = diff_trees(before, after)
        if changes.is_empty:
            return changes

        self._set_tree(after)
        self.logger.debug(
            "session.tree_changed",
            action=action.kind,
            subtotal=self.totals.subtotal,
        )
        self._emit(
            "tree_changed",
            {"action": action.kind, "changes": changes.model_dump()},
        )
        self._emit("totals_updated", self.totals.model_dump())
        return changes

    def add_node(self, node: EstimateNode, parent_group_id: str | None = None) -> TreeChanges:
        return self.dispatch(AddNodeAction(node=node, parent_group_id=parent_group_id))

    def update_node(self, node: EstimateNode) -> TreeChanges:
        return self.dispatch(UpdateNodeAction(node=node))

    def move_node(
        self,
        node_id: str,
        node_type: NodeType | str,
        new_parent_group_id: str | None,
        new_order_index: int,
    ) -> TreeChanges:
        return self.dispatch(
            MoveNodeAction(
                node_id=node_id,
                node_type=node_type,
                new_parent_group_id=new_parent_group_id,
                new_order_index=new_order_index,
            )
        )

    def move_node_by_direction(
        self, node_id: str, node_type: NodeType | str, direction: MoveDirection | str
    ) -> TreeChanges:
        return self.dispatch(
            MoveStepAction(node_id=node_id, node_type=node_type, direction=direction)
        )

    def delete_node(self, node_id: str, node_type: NodeType | str) -> TreeChanges:
        return self.dispatch(DeleteNodeAction(node_id=node_id, node_type=node_type))

    def add_group(
        self, name: str | None, parent_group_id: str | None = None
    ) -> tuple[GroupNode, TreeChanges]:
        """Create a named group under a parent (or the root).

        Raises:
            ValidationError: If the trimmed name is empty.
        """
        trimmed = (name or "").strip()
        if not trimmed:
            raise ValidationError("Group name is required", {"field": "name"})

        group = GroupNode(
            id=placeholder_id(NodeType.GROUP),
            estimate_id=self.current_estimate_id,
            name=trimmed,
        )
        changes = self.add_node(group, parent_group_id)
        return find_node(self.tree, group.id, NodeType.GROUP), changes

    def add_item(
        self, item: ItemNode, group_id: str | None = None
    ) -> tuple[ItemNode, TreeChanges]:
        """Insert an item and return it as stored in the tree."""
        update: dict[str, Any] = {}
        if not item.id:
            update["id"] = placeholder_id(NodeType.ITEM)
        if item.estimate_id is None:
            update["estimate_id"] = self.current_estimate_id
        if update:
            item = item.model_copy(update=update)
        changes = self.add_node(item, group_id)
        return find_node(self.tree, item.id, NodeType.ITEM), changes

    # Companion state

    def select_customer(self, customer: Customer | None) -> None:
        self.selected_customer = customer
        self.updated_at = datetime.utcnow()
        self._emit(
            "customer_selected",
            {"customer_id": customer.customer_id if customer else None},
        )

    def set_estimate_id(self, estimate_id: str) -> None:
        """Attach the session to a stored estimate and stamp unowned nodes."""
        self.current_estimate_id = estimate_id

        def stamp(nodes: EstimateTree) -> EstimateTree:
            stamped = []
            for node in nodes:
                update: dict[str, Any] = {}
                if node.estimate_id is None:
                    update["estimate_id"] = estimate_id
                if isinstance(node, GroupNode):
                    update["children"] = stamp(node.children)
                stamped.append(node.model_copy(update=update) if update else node)
            return tuple(stamped)

        self.tree = stamp(self.tree)

    # Persistence bookkeeping

    def pending_changes(self) -> TreeChanges:
        """Rows changed since the last load or save."""
        return diff_trees(self._saved_tree, self.tree)

    def snapshot(self) -> tuple[EstimateTree, TreeChanges]:
        """Capture the tree being saved together with its pending rows."""
        return self.tree, diff_trees(self._saved_tree, self.tree)

    def mark_saved(self, saved_tree: EstimateTree, id_mapping: Mapping[str, str]) -> None:
        """Record a completed save and swap placeholder ids for stored ones.

        ``saved_tree`` is the snapshot that was written; edits made while
        the save was in flight stay pending.
        """
        self._saved_tree = rekey_tree(saved_tree, id_mapping)
        if id_mapping:
            self.tree = rekey_tree(self.tree, id_mapping)
        self.logger.info(
            "session.saved",
            estimate_id=self.current_estimate_id,
            rekeyed=len(id_mapping),
        )
        self._emit(
            "estimate_saved",
            {"estimate_id": self.current_estimate_id, "id_mapping": dict(id_mapping)},
        )


class SessionManager:
    """Manages estimate sessions in memory."""

    def __init__(self, ttl_hours: int | None = None, events: EventBus | None = None):
        self._sessions: dict[UUID, EstimateSession] = {}
        self._ttl = timedelta(hours=ttl_hours or settings.session_ttl_hours)
        self._events = events or get_event_bus()
        self.logger = get_logger("session_manager")

    async def create_session(
        self,
        estimate_id: str | None = None,
        customer: Customer | None = None,
    ) -> EstimateSession:
        """Create a new, empty session."""
        session = EstimateSession(estimate_id=estimate_id, customer=customer)
        session.subscribe(self._events.listener_for(session.id))
        self._sessions[session.id] = session
        self.logger.info(
            "session.created",
            session_id=str(session.id),
            estimate_id=estimate_id,
        )
        return session

    async def get_session(self, session_id: UUID) -> EstimateSession | None:
        """Get a session by ID."""
        session = self._sessions.get(session_id)
        if session:
            # Sessions expire after a period without edits
            if datetime.utcnow() - session.updated_at > self._ttl:
                await self.delete_session(session_id)
                return None
        return session

    async def delete_session(self, session_id: UUID) -> bool:
        """Delete a session."""
        if session_id in self._sessions:
            del self._sessions[session_id]
            self._events.unsubscribe(session_id)
            return True
        return False

    async def list_sessions(
        self,
        limit: int = 10,
        offset: int = 0,
    ) -> tuple[list[EstimateSession], int]:
        """List sessions, most recently edited first."""
        sessions = sorted(
            self._sessions.values(), key=lambda s: s.updated_at, reverse=True
        )
        total = len(sessions)
        return sessions[offset : offset + limit], total

    async def cleanup_expired(self) -> int:
        """Remove expired sessions. Returns count of removed sessions."""
        now = datetime.utcnow()
        expired = [
            sid
            for sid, session in self._sessions.items()
            if now - session.updated_at > self._ttl
        ]
        for sid in expired:
            await self.delete_session(sid)
        return len(expired)


@lru_cache
def get_session_manager() -> SessionManager:
    """Get the session manager singleton."""
    return SessionManager()
