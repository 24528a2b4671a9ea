"""Per-unit and per-line cost computation for estimate items."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from estimator.models.estimate import COST_FIELDS, coerce_cost, coerce_quantity


@dataclass(frozen=True)
class ItemCosts:
    """Derived costs for a single item."""

    cost_per_unit: float
    line_cost_total: float


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def compute_item_costs(item: Any) -> ItemCosts:
    """Compute cost per unit and line total for an item.

    ``item`` may be an ``ItemNode``, an ``ItemRecord`` or a plain mapping.
    Missing or malformed costs count as 0; a missing or non-positive
    quantity counts as 1.
    """
    cost_per_unit = sum(coerce_cost(_field(item, name)) for name in COST_FIELDS)
    quantity = coerce_quantity(_field(item, "quantity"))
    return ItemCosts(
        cost_per_unit=cost_per_unit,
        line_cost_total=quantity * cost_per_unit,
    )
