"""Estimate tree data models."""

import math
import time
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

COST_FIELDS = (
    "material_cost",
    "labor_cost",
    "equipment_cost",
    "other_cost",
    "subcontract_cost",
)

# Units offered by the structured picker; stored as free text.
UNIT_CHOICES = ("sq m", "sq ft", "ton", "m³", "ea", "lm", "lf")


class NodeType(str, Enum):
    """Kind of node in an estimate tree."""

    GROUP = "group"
    ITEM = "item"


class MoveDirection(str, Enum):
    """Single-step reorder direction."""

    UP = "up"
    DOWN = "down"


def coerce_cost(value: Any) -> float:
    """Normalize a per-unit cost to a finite, non-negative float.

    Anything unparsable, NaN, infinite or negative becomes 0 so the
    editing UI always has a renderable number.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def coerce_quantity(value: Any) -> float:
    """Normalize a quantity; invalid or non-positive input becomes 1."""
    if value is None or isinstance(value, bool):
        return 1.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(number) or number <= 0:
        return 1.0
    return number


def placeholder_id(node_type: NodeType | str) -> str:
    """Generate a client-side id used until the store assigns a real one."""
    kind = NodeType(node_type).value
    return f"temp-{kind}-{time.time_ns() // 1_000_000}-{uuid4().hex[:6]}"


def is_placeholder_id(node_id: str | None) -> bool:
    """Check whether an id was generated client-side."""
    return bool(node_id) and node_id.startswith("temp-")


class GroupRecord(BaseModel):
    """A quote group row as returned by the backing store."""

    id: str
    estimate_id: str | None = None
    name: str
    order_index: int | None = None
    parent_group_id: str | None = None


class _ItemFields(BaseModel):
    """Fields shared by item rows and item nodes."""

    estimate_id: str | None = None
    group_id: str | None = None
    title: str | None = None
    description: str | None = None
    quantity: float = 1.0
    unit: str | None = None

    # Per-unit cost components
    material_cost: float | None = None
    labor_cost: float | None = None
    equipment_cost: float | None = None
    other_cost: float | None = None
    subcontract_cost: float | None = None

    # Catalog back-references
    item_id: str | None = None
    costbook_item_id: str | None = None

    order_index: int | None = None

    @field_validator(*COST_FIELDS, mode="before")
    @classmethod
    def _lenient_cost(cls, value: Any) -> float | None:
        if value is None:
            return None
        return coerce_cost(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def _lenient_quantity(cls, value: Any) -> float:
        return coerce_quantity(value)


class ItemRecord(_ItemFields):
    """A quote item row as returned by the backing store."""

    id: str


class GroupNode(BaseModel):
    """A folder-like node that organizes items and sub-groups."""

    model_config = ConfigDict(frozen=True)

    type: Literal["group"] = "group"
    id: str | None = None
    estimate_id: str | None = None
    name: str = ""
    order_index: int | None = None
    parent_group_id: str | None = None
    children: tuple["EstimateNode", ...] = ()

    @property
    def node_type(self) -> NodeType:
        return NodeType.GROUP

    def to_record(self) -> GroupRecord:
        """Flatten into a store row (children dropped)."""
        return GroupRecord(
            id=self.id or "",
            estimate_id=self.estimate_id,
            name=self.name,
            order_index=self.order_index,
            parent_group_id=self.parent_group_id,
        )


class ItemNode(_ItemFields):
    """A priced line within the estimate."""

    model_config = ConfigDict(frozen=True)

    type: Literal["item"] = "item"
    id: str | None = None

    @property
    def node_type(self) -> NodeType:
        return NodeType.ITEM

    @computed_field
    @property
    def cost_per_unit(self) -> float:
        from estimator.core.costs import compute_item_costs

        return compute_item_costs(self).cost_per_unit

    @computed_field
    @property
    def line_cost_total(self) -> float:
        from estimator.core.costs import compute_item_costs

        return compute_item_costs(self).line_cost_total

    @computed_field
    @property
    def mode(self) -> Literal["catalog", "custom"]:
        """Catalog items keep their description, unit and title read-only in the UI."""
        return "catalog" if self.item_id or self.costbook_item_id else "custom"

    def to_record(self) -> ItemRecord:
        """Flatten into a store row; derived costs are not persisted."""
        data = self.model_dump(exclude={"type", "id"} | DERIVED_ITEM_FIELDS)
        return ItemRecord(id=self.id or "", **data)


DERIVED_ITEM_FIELDS = frozenset({"cost_per_unit", "line_cost_total", "mode"})

EstimateNode = Annotated[Union[GroupNode, ItemNode], Field(discriminator="type")]

# Top-level ordered sequence of groups and items for one estimate.
EstimateTree = tuple[EstimateNode, ...]

GroupNode.model_rebuild()


class EstimateTotals(BaseModel):
    """Aggregate monetary figures derived from the current tree."""

    model_config = ConfigDict(frozen=True)

    subtotal: float = 0.0
    discount_amount: float = 0.0
    total_after_discount: float = 0.0
    tax_amount: float = 0.0
    final_total: float = 0.0


class IntegrityWarning(BaseModel):
    """A record that could not be placed where it claimed to belong."""

    kind: Literal["orphan_item", "orphan_group"]
    node_id: str
    missing_parent_id: str | None = None
    message: str


class TreeChanges(BaseModel):
    """Rows affected by a mutation, for the caller to persist."""

    upserted_groups: list[GroupRecord] = Field(default_factory=list)
    upserted_items: list[ItemRecord] = Field(default_factory=list)
    deleted_group_ids: list[str] = Field(default_factory=list)
    deleted_item_ids: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.upserted_groups
            or self.upserted_items
            or self.deleted_group_ids
            or self.deleted_item_ids
        )


class Customer(BaseModel):
    """Customer fields the estimate builder needs alongside the tree."""

    customer_id: str
    first_name: str | None = None
    last_name: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.customer_id


class EstimateRecord(BaseModel):
    """Persisted quote header."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    customer_id: str | None = None
    status: str = "Draft"
    subtotal: float = 0.0
    discount: float = 0.0
    tax_amount: float = 0.0
    total: float = 0.0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
