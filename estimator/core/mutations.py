"""Structural operations on an estimate tree.

Every operation returns a new tree and leaves its input untouched. Nodes
are frozen models, and only the groups on the path to a change are
copied; everything else is shared between the old and new tree.

None of these functions raise for ordinary misuse. A stale id is a
no-op. An unknown parent on insert falls back to the root. A move that
cannot complete returns the original tree.
"""

from typing import Any

from estimator.core.tree import (
    children_of,
    descendant_group_ids,
    find_group,
    locate_node,
    matches,
    renumber,
    renumber_tree,
    replace_children,
    sort_nodes,
)
from estimator.models.estimate import (
    COST_FIELDS,
    DERIVED_ITEM_FIELDS,
    EstimateNode,
    EstimateTree,
    GroupNode,
    ItemNode,
    MoveDirection,
    NodeType,
    placeholder_id,
)
from estimator.utils.logging import get_logger

logger = get_logger(__name__)

ITEM_TEXT_FIELDS = ("title", "description", "unit")

# Structural fields an update never touches directly.
_GROUP_LOCKED = {"type", "id", "children", "parent_group_id", "order_index"}
_ITEM_LOCKED = {"type", "id", "group_id", "order_index"} | DERIVED_ITEM_FIELDS


def _type_label(node_type: NodeType | str) -> str:
    return node_type.value if isinstance(node_type, NodeType) else str(node_type)


def _parent_field(node: EstimateNode) -> str:
    return "parent_group_id" if isinstance(node, GroupNode) else "group_id"


def _prepare_new_node(
    node: EstimateNode, order_index: int, parent_id: str | None
) -> EstimateNode:
    update: dict[str, Any] = {
        "order_index": order_index,
        _parent_field(node): parent_id,
    }
    if not node.id:
        update["id"] = placeholder_id(node.node_type)

    if isinstance(node, ItemNode):
        for name in ITEM_TEXT_FIELDS:
            if getattr(node, name) is None:
                update[name] = ""
        for name in COST_FIELDS:
            if getattr(node, name) is None:
                update[name] = 0.0

    return node.model_copy(update=update)


def add_node(
    tree: EstimateTree, node: EstimateNode, parent_group_id: str | None = None
) -> EstimateTree:
    """Append a node to a group (or the root) with the next order index."""
    target_id = parent_group_id
    if target_id is not None and find_group(tree, target_id) is None:
        logger.warning(
            "mutation.add_parent_missing",
            parent_group_id=target_id,
            node_type=node.type,
        )
        target_id = None

    siblings = children_of(tree, target_id) or ()
    if siblings:
        next_index = max(
            (s.order_index if s.order_index is not None else -1) for s in siblings
        ) + 1
    else:
        next_index = 0

    prepared = _prepare_new_node(node, next_index, target_id)
    new_tree = replace_children(
        tree, target_id, lambda children: sort_nodes(children + (prepared,))
    )
    logger.debug(
        "mutation.node_added",
        node_id=prepared.id,
        node_type=prepared.type,
        parent_group_id=target_id,
        order_index=next_index,
    )
    return new_tree if new_tree is not None else tuple(tree)


def _merge(current: EstimateNode, updated: EstimateNode) -> EstimateNode:
    locked = _GROUP_LOCKED if isinstance(current, GroupNode) else _ITEM_LOCKED
    changes = {
        name: getattr(updated, name)
        for name in updated.model_fields_set
        if name not in locked
    }
    return current.model_copy(update=changes) if changes else current


def update_node(tree: EstimateTree, updated: EstimateNode) -> EstimateTree:
    """Merge the fields an update explicitly sets over the matching node.

    Group children and parent references are never touched. An explicit
    order_index that differs from the current one repositions the node
    among its siblings.
    """
    if not updated.id:
        return tuple(tree)

    location = locate_node(tree, updated.id, updated.node_type)
    if location is None:
        logger.warning(
            "mutation.update_not_found",
            node_id=updated.id,
            node_type=updated.type,
        )
        return tuple(tree)

    merged = _merge(location.node, updated)
    new_tree = tree
    if merged is not location.node:
        new_tree = replace_children(
            tree,
            location.parent_id,
            lambda children: children[: location.index]
            + (merged,)
            + children[location.index + 1 :],
        )

    wants_reorder = (
        "order_index" in updated.model_fields_set
        and updated.order_index is not None
        and updated.order_index != location.node.order_index
    )
    if wants_reorder:
        new_tree = move_node(
            new_tree,
            updated.id,
            updated.node_type,
            location.parent_id,
            updated.order_index,
        )
    return tuple(new_tree)


def move_node(
    tree: EstimateTree,
    node_id: str,
    node_type: NodeType | str,
    new_parent_group_id: str | None,
    new_order_index: int,
) -> EstimateTree:
    """Move a node to a new parent and position.

    Both the old and new sibling lists end up densely numbered. The move
    is all-or-nothing: an unknown node, an unknown target parent or a
    target inside the moved group's own subtree returns the input tree.
    """
    location = locate_node(tree, node_id, node_type)
    if location is None:
        logger.warning(
            "mutation.move_not_found",
            node_id=node_id,
            node_type=_type_label(node_type),
        )
        return tuple(tree)

    node = location.node
    if new_parent_group_id is not None:
        if find_group(tree, new_parent_group_id) is None:
            logger.warning(
                "mutation.move_rejected",
                reason="parent_missing",
                node_id=node_id,
                new_parent_group_id=new_parent_group_id,
            )
            return tuple(tree)
        if isinstance(node, GroupNode) and (
            new_parent_group_id == node.id
            or new_parent_group_id in descendant_group_ids(node)
        ):
            logger.warning(
                "mutation.move_rejected",
                reason="cycle",
                node_id=node_id,
                new_parent_group_id=new_parent_group_id,
            )
            return tuple(tree)

    detached = replace_children(
        tree,
        location.parent_id,
        lambda children: renumber(
            children[: location.index] + children[location.index + 1 :]
        ),
    )
    if detached is None:
        return tuple(tree)

    moved = node.model_copy(update={_parent_field(node): new_parent_group_id})
    target = children_of(detached, new_parent_group_id)
    if target is None:
        return tuple(tree)
    position = max(0, min(new_order_index, len(target)))

    result = replace_children(
        detached,
        new_parent_group_id,
        lambda children: renumber(children[:position] + (moved,) + children[position:]),
    )
    if result is None:
        return tuple(tree)

    logger.debug(
        "mutation.node_moved",
        node_id=node_id,
        node_type=_type_label(node_type),
        new_parent_group_id=new_parent_group_id,
        position=position,
    )
    return result


def move_node_by_direction(
    tree: EstimateTree,
    node_id: str,
    node_type: NodeType | str,
    direction: MoveDirection | str,
) -> EstimateTree:
    """Swap a node with its previous or next sibling."""
    location = locate_node(tree, node_id, node_type)
    if location is None:
        return tuple(tree)

    try:
        step = -1 if MoveDirection(direction) == MoveDirection.UP else 1
    except ValueError:
        logger.warning("mutation.move_rejected", reason="direction", direction=str(direction))
        return tuple(tree)
    siblings = children_of(tree, location.parent_id) or ()
    target_index = location.index + step
    if target_index < 0 or target_index >= len(siblings):
        return tuple(tree)

    return move_node(tree, node_id, node_type, location.parent_id, target_index)


def _without(nodes: EstimateTree, node_id: str, node_type: NodeType | str) -> EstimateTree:
    kept: list[EstimateNode] = []
    for node in nodes:
        if matches(node, node_id, node_type):
            continue
        if isinstance(node, GroupNode):
            children = _without(node.children, node_id, node_type)
            if children is not node.children:
                node = node.model_copy(update={"children": children})
        kept.append(node)
    if len(kept) == len(nodes) and all(a is b for a, b in zip(kept, nodes)):
        return nodes
    return tuple(kept)


def delete_node(
    tree: EstimateTree, node_id: str, node_type: NodeType | str
) -> EstimateTree:
    """Remove a node and, for a group, its whole subtree.

    Every sibling list in the tree is renumbered afterwards.
    """
    tree = tuple(tree)
    remaining = _without(tree, node_id, node_type)
    if remaining is tree:
        logger.warning(
            "mutation.delete_not_found",
            node_id=node_id,
            node_type=_type_label(node_type),
        )
        return tree

    logger.debug(
        "mutation.node_deleted",
        node_id=node_id,
        node_type=_type_label(node_type),
    )
    return renumber_tree(remaining)
