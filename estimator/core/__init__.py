"""Estimate tree engine."""

from estimator.core.costs import ItemCosts, compute_item_costs
from estimator.core.exceptions import (
    EstimateNotFoundError,
    EstimatorError,
    PersistenceError,
    SessionNotFoundError,
    ValidationError,
)
from estimator.core.mutations import (
    add_node,
    delete_node,
    move_node,
    move_node_by_direction,
    update_node,
)
from estimator.core.session import EstimateSession, SessionManager, get_session_manager
from estimator.core.totals import TAX_RATE, compute_totals
from estimator.core.tree import build_tree, build_tree_with_warnings, diff_trees, flatten_tree

__all__ = [
    "EstimatorError",
    "EstimateNotFoundError",
    "PersistenceError",
    "SessionNotFoundError",
    "ValidationError",
    "ItemCosts",
    "compute_item_costs",
    "build_tree",
    "build_tree_with_warnings",
    "flatten_tree",
    "diff_trees",
    "add_node",
    "update_node",
    "move_node",
    "move_node_by_direction",
    "delete_node",
    "TAX_RATE",
    "compute_totals",
    "EstimateSession",
    "SessionManager",
    "get_session_manager",
]
