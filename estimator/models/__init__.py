"""Data models for the estimator."""

from estimator.models.estimate import (
    COST_FIELDS,
    UNIT_CHOICES,
    Customer,
    EstimateNode,
    EstimateRecord,
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
    coerce_cost,
    coerce_quantity,
    is_placeholder_id,
    placeholder_id,
)
from estimator.models.session import (
    MutationResponse,
    SaveResponse,
    SessionCreate,
    SessionResponse,
)

__all__ = [
    # Tree models
    "EstimateNode",
    "EstimateTree",
    "GroupNode",
    "ItemNode",
    "NodeType",
    "MoveDirection",
    "COST_FIELDS",
    "UNIT_CHOICES",
    "coerce_cost",
    "coerce_quantity",
    "placeholder_id",
    "is_placeholder_id",
    # Store rows
    "GroupRecord",
    "ItemRecord",
    "EstimateRecord",
    "Customer",
    # Derived state
    "EstimateTotals",
    "IntegrityWarning",
    "TreeChanges",
    # Session models
    "SessionCreate",
    "SessionResponse",
    "MutationResponse",
    "SaveResponse",
]
