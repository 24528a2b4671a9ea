"""Building, walking and comparing estimate trees."""

from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any, NamedTuple

from estimator.models.estimate import (
    EstimateNode,
    EstimateTree,
    GroupNode,
    GroupRecord,
    IntegrityWarning,
    ItemNode,
    ItemRecord,
    NodeType,
    TreeChanges,
)
from estimator.utils.logging import get_logger

logger = get_logger(__name__)


class NodeLocation(NamedTuple):
    """Where a node sits: its parent group (None for root) and position."""

    node: EstimateNode
    parent_id: str | None
    index: int


def _order_key(node: Any) -> tuple[bool, int]:
    # Missing order_index sorts last; sorted() keeps those stable.
    return (node.order_index is None, node.order_index or 0)


def sort_nodes(nodes: Iterable[EstimateNode]) -> EstimateTree:
    """Sort siblings ascending by order_index."""
    return tuple(sorted(nodes, key=_order_key))


def _as_group_record(data: GroupRecord | Mapping[str, Any]) -> GroupRecord:
    if isinstance(data, GroupRecord):
        return data
    return GroupRecord.model_validate(data)


def _as_item_record(data: ItemRecord | Mapping[str, Any]) -> ItemRecord:
    if isinstance(data, ItemRecord):
        return data
    return ItemRecord.model_validate(data)


def build_tree_with_warnings(
    groups: Iterable[GroupRecord | Mapping[str, Any]],
    items: Iterable[ItemRecord | Mapping[str, Any]],
) -> tuple[EstimateTree, list[IntegrityWarning]]:
    """Build a nested tree from flat group and item rows.

    Items and groups whose parent cannot be resolved are placed at the
    root rather than dropped, with the broken reference cleared, and
    reported as integrity warnings.
    """
    group_records = [_as_group_record(g) for g in groups]
    group_map: dict[str, GroupRecord] = {g.id: g for g in group_records}
    entries: dict[str, list[ItemNode | GroupRecord]] = {g.id: [] for g in group_records}
    root_entries: list[ItemNode | GroupRecord] = []
    warnings: list[IntegrityWarning] = []

    for raw in items:
        record = _as_item_record(raw)
        node = ItemNode(**record.model_dump())
        if record.group_id and record.group_id in group_map:
            entries[record.group_id].append(node)
            continue

        if record.group_id:
            message = f"Item {record.id} references non-existent group {record.group_id}"
        else:
            message = f"Item {record.id} has no group"
        logger.warning(
            "tree.orphan_item",
            item_id=record.id,
            group_id=record.group_id,
        )
        warnings.append(
            IntegrityWarning(
                kind="orphan_item",
                node_id=record.id,
                missing_parent_id=record.group_id,
                message=message,
            )
        )
        root_entries.append(node.model_copy(update={"group_id": None}))

    for record in group_map.values():
        parent_id = record.parent_group_id
        if parent_id is None:
            root_entries.append(record)
        elif parent_id in group_map and parent_id != record.id:
            entries[parent_id].append(record)
        else:
            logger.warning(
                "tree.orphan_group",
                group_id=record.id,
                parent_group_id=parent_id,
            )
            warnings.append(
                IntegrityWarning(
                    kind="orphan_group",
                    node_id=record.id,
                    missing_parent_id=parent_id,
                    message=f"Group {record.id} references non-existent parent group {parent_id}",
                )
            )
            root_entries.append(record.model_copy(update={"parent_group_id": None}))

    visited: set[str] = set()

    def make_nodes(level: list[ItemNode | GroupRecord]) -> EstimateTree:
        nodes: list[EstimateNode] = []
        for entry in level:
            if isinstance(entry, ItemNode):
                nodes.append(entry)
                continue
            if entry.id in visited:
                continue
            visited.add(entry.id)
            nodes.append(
                GroupNode(
                    **entry.model_dump(),
                    children=make_nodes(entries[entry.id]),
                )
            )
        return sort_nodes(nodes)

    tree = make_nodes(root_entries)

    # Groups caught in a parent cycle are unreachable from the root;
    # promote one per cycle so nothing is lost.
    for record in group_map.values():
        if record.id in visited:
            continue
        logger.warning(
            "tree.group_cycle",
            group_id=record.id,
            parent_group_id=record.parent_group_id,
        )
        warnings.append(
            IntegrityWarning(
                kind="orphan_group",
                node_id=record.id,
                missing_parent_id=record.parent_group_id,
                message=f"Group {record.id} is part of a parent cycle",
            )
        )
        tree = sort_nodes(
            tree + make_nodes([record.model_copy(update={"parent_group_id": None})])
        )

    return tree, warnings


def build_tree(
    groups: Iterable[GroupRecord | Mapping[str, Any]],
    items: Iterable[ItemRecord | Mapping[str, Any]],
) -> EstimateTree:
    """Build a nested tree from flat group and item rows."""
    tree, _ = build_tree_with_warnings(groups, items)
    return tree


def iter_nodes(
    tree: EstimateTree, parent_id: str | None = None
) -> Iterator[tuple[EstimateNode, str | None]]:
    """Walk the tree depth-first, yielding (node, parent group id)."""
    for node in tree:
        yield node, parent_id
        if isinstance(node, GroupNode):
            yield from iter_nodes(node.children, node.id)


def matches(node: EstimateNode, node_id: str, node_type: NodeType | str) -> bool:
    """An unknown node type matches nothing."""
    try:
        wanted = NodeType(node_type)
    except ValueError:
        return False
    return node.node_type == wanted and node.id == node_id


def find_node(
    tree: EstimateTree, node_id: str, node_type: NodeType | str
) -> EstimateNode | None:
    """Find a node by (type, id)."""
    location = locate_node(tree, node_id, node_type)
    return location.node if location else None


def find_group(tree: EstimateTree, group_id: str) -> GroupNode | None:
    node = find_node(tree, group_id, NodeType.GROUP)
    return node if isinstance(node, GroupNode) else None


def locate_node(
    tree: EstimateTree,
    node_id: str,
    node_type: NodeType | str,
    parent_id: str | None = None,
) -> NodeLocation | None:
    """Find a node along with its parent group id and sibling position."""
    for index, node in enumerate(tree):
        if matches(node, node_id, node_type):
            return NodeLocation(node, parent_id, index)
        if isinstance(node, GroupNode):
            found = locate_node(node.children, node_id, node_type, node.id)
            if found:
                return found
    return None


def children_of(tree: EstimateTree, parent_id: str | None) -> EstimateTree | None:
    """Return the sibling list under ``parent_id`` (root when None)."""
    if parent_id is None:
        return tuple(tree)
    group = find_group(tree, parent_id)
    return group.children if group else None


def descendant_group_ids(group: GroupNode) -> set[str]:
    """Ids of every group nested anywhere below ``group``."""
    return {
        node.id
        for node, _ in iter_nodes(group.children)
        if isinstance(node, GroupNode) and node.id
    }


def replace_children(
    tree: EstimateTree,
    parent_id: str | None,
    update: Callable[[EstimateTree], Iterable[EstimateNode]],
) -> EstimateTree | None:
    """Rebuild the tree with one sibling list replaced.

    Only the groups on the path to ``parent_id`` are copied; every other
    node is shared with the input. Returns None when the parent is not
    in the tree.
    """
    if parent_id is None:
        return tuple(update(tuple(tree)))

    for index, node in enumerate(tree):
        if not isinstance(node, GroupNode):
            continue
        if node.id == parent_id:
            new_children = tuple(update(node.children))
        else:
            new_children = replace_children(node.children, parent_id, update)
            if new_children is None:
                continue
        replaced = node.model_copy(update={"children": new_children})
        return tuple(tree[:index]) + (replaced,) + tuple(tree[index + 1 :])
    return None


def renumber(nodes: Iterable[EstimateNode]) -> EstimateTree:
    """Assign dense order indexes 0..n-1 to one sibling list."""
    return tuple(
        node if node.order_index == index else node.model_copy(update={"order_index": index})
        for index, node in enumerate(nodes)
    )


def renumber_tree(nodes: EstimateTree) -> EstimateTree:
    """Densely renumber every sibling list at every level."""
    result: list[EstimateNode] = []
    changed = False
    for index, node in enumerate(nodes):
        update: dict[str, Any] = {}
        if node.order_index != index:
            update["order_index"] = index
        if isinstance(node, GroupNode):
            children = renumber_tree(node.children)
            if children is not node.children:
                update["children"] = children
        if update:
            node = node.model_copy(update=update)
            changed = True
        result.append(node)
    return tuple(result) if changed else tuple(nodes)


def flatten_tree(tree: EstimateTree) -> tuple[list[GroupRecord], list[ItemRecord]]:
    """Flatten into store rows, parents before descendants."""
    groups: list[GroupRecord] = []
    items: list[ItemRecord] = []
    for node, _ in iter_nodes(tree):
        if isinstance(node, GroupNode):
            groups.append(node.to_record())
        else:
            items.append(node.to_record())
    return groups, items


def rekey_tree(tree: EstimateTree, mapping: Mapping[str, str]) -> EstimateTree:
    """Swap ids (and parent references) according to ``mapping``."""
    if not mapping:
        return tuple(tree)

    def rekey(node: EstimateNode) -> EstimateNode:
        update: dict[str, Any] = {}
        if node.id in mapping:
            update["id"] = mapping[node.id]
        if isinstance(node, GroupNode):
            if node.parent_group_id in mapping:
                update["parent_group_id"] = mapping[node.parent_group_id]
            update["children"] = tuple(rekey(child) for child in node.children)
        elif node.group_id in mapping:
            update["group_id"] = mapping[node.group_id]
        return node.model_copy(update=update) if update else node

    return tuple(rekey(node) for node in tree)


def diff_trees(before: EstimateTree, after: EstimateTree) -> TreeChanges:
    """Work out which rows a change between two trees touched."""
    before_groups, before_items = flatten_tree(before)
    after_groups, after_items = flatten_tree(after)

    old_groups = {g.id: g for g in before_groups}
    old_items = {i.id: i for i in before_items}
    new_group_ids = {g.id for g in after_groups}
    new_item_ids = {i.id for i in after_items}

    return TreeChanges(
        upserted_groups=[g for g in after_groups if old_groups.get(g.id) != g],
        upserted_items=[i for i in after_items if old_items.get(i.id) != i],
        deleted_group_ids=[gid for gid in old_groups if gid not in new_group_ids],
        deleted_item_ids=[iid for iid in old_items if iid not in new_item_ids],
    )
