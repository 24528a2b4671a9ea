"""Reducer over estimate tree actions."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from estimator.core.mutations import (
    add_node,
    delete_node,
    move_node,
    move_node_by_direction,
    update_node,
)
from estimator.models.estimate import EstimateNode, EstimateTree, MoveDirection, NodeType


class AddNodeAction(BaseModel):
    """Insert a node under a group, or at the root."""

    kind: Literal["add"] = "add"
    node: EstimateNode
    parent_group_id: str | None = None


class UpdateNodeAction(BaseModel):
    """Merge fields into an existing node."""

    kind: Literal["update"] = "update"
    node: EstimateNode


class MoveNodeAction(BaseModel):
    """Move a node to a new parent and position."""

    kind: Literal["move"] = "move"
    node_id: str
    node_type: NodeType
    new_parent_group_id: str | None = None
    new_order_index: int = 0


class MoveStepAction(BaseModel):
    """Swap a node with its neighbouring sibling."""

    kind: Literal["move_step"] = "move_step"
    node_id: str
    node_type: NodeType
    direction: MoveDirection


class DeleteNodeAction(BaseModel):
    """Remove a node and its subtree."""

    kind: Literal["delete"] = "delete"
    node_id: str
    node_type: NodeType


TreeAction = Annotated[
    Union[AddNodeAction, UpdateNodeAction, MoveNodeAction, MoveStepAction, DeleteNodeAction],
    Field(discriminator="kind"),
]


def reduce(tree: EstimateTree, action: TreeAction) -> EstimateTree:
    """Apply one action to a tree, returning the new tree."""
    if isinstance(action, AddNodeAction):
        return add_node(tree, action.node, action.parent_group_id)
    if isinstance(action, UpdateNodeAction):
        return update_node(tree, action.node)
    if isinstance(action, MoveNodeAction):
        return move_node(
            tree,
            action.node_id,
            action.node_type,
            action.new_parent_group_id,
            action.new_order_index,
        )
    if isinstance(action, MoveStepAction):
        return move_node_by_direction(tree, action.node_id, action.node_type, action.direction)
    if isinstance(action, DeleteNodeAction):
        return delete_node(tree, action.node_id, action.node_type)
    raise TypeError(f"Unknown tree action: {type(action).__name__}")
